"""Security testing.

Authentication and role-based authorization are checked against the live
API. Input sanitization, output escaping, CSRF tokens and CORS decisions
are checked against the helpers in this module, which are the reference
behaviour the POS front end is expected to implement.
"""

from __future__ import annotations

import logging
import math
import re
import secrets
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from posqa_core.types.report import ModuleReport, Recommendation
from posqa_core.types.result import TestResult

from posqa_client.models import ApiResponse

from posqa_testcase import TestModule, category, check, expect_success
from posqa_testcase.scenario import Scenario

from posqa_modules.common import OPERATION_PARAMS, ROLE_PERMISSIONS, ROLES, call_api, user_key

logger = logging.getLogger(__name__)

SQL_KEYWORDS = ("DROP", "DELETE", "INSERT", "UPDATE", "SELECT", "UNION", "EXECUTE", "EXEC")

SQL_INJECTION_PATTERNS = (
    re.compile(r"\b(DROP|DELETE|INSERT|UPDATE)\b", re.IGNORECASE),
    re.compile(r"\bUNION\b.*\bSELECT\b", re.IGNORECASE),
    re.compile(r"\b(EXEC|EXECUTE)\b", re.IGNORECASE),
    re.compile(r";|--|/\*|\*/"),
    re.compile(
        r"('|\")\s*(OR|AND)\s*('|\")?(\d+|true|false)\s*=\s*('|\")?(\d+|true|false)",
        re.IGNORECASE,
    ),
)

SCRIPT_PATTERNS = (
    re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE),
    re.compile(r"<iframe\b[^<]*(?:(?!</iframe>)<[^<]*)*</iframe>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
)

EVENT_HANDLER_PATTERN = re.compile(
    r"on(load|error|click|mouseover|mouseout|focus|blur|change|submit)\s*=", re.IGNORECASE
)
DANGEROUS_PATTERN = re.compile(r"<|>|javascript:|on\w+=", re.IGNORECASE)
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

HTML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
}

CSRF_HEADER = "X-CSRF-Token"

CORS_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
CORS_HEADERS = "Content-Type, Authorization, X-CSRF-Token"
CORS_MAX_AGE = "86400"

DEFAULT_ALLOWED_ORIGINS = (
    "https://example.com",
    "https://app.example.com",
    "http://localhost:3000",
)

SECURITY_OPERATIONS = ("addPurchase", "addSale", "getReport", "manageUsers", "getBootstrapData")

AUTHORIZATION_REQUIREMENTS = {"OWNER": "8.2", "PARTNER": "8.3", "STAFF": "8.4"}

SQL_INJECTION_PAYLOADS = (
    "'; DROP TABLE Users; --",
    "1' OR '1'='1",
    "admin'--",
    "' OR 1=1--",
    "1; DELETE FROM Ingredients WHERE '1'='1",
)

SCRIPT_PAYLOADS = (
    '<script>alert("XSS")</script>',
    '<img src=x onerror=alert("XSS")>',
    'javascript:alert("XSS")',
    "<iframe src=\"javascript:alert('XSS')\"></iframe>",
    '<body onload=alert("XSS")>',
)

SPECIAL_CHARACTERS = (
    ("test<>test", "test&lt;&gt;test"),
    ("test&test", "test&amp;test"),
    ('test"test', "test&quot;test"),
    ("test'test", "test&#x27;test"),
    ("test/test", "test&#x2F;test"),
)

NUMERIC_INPUTS = (
    ("123", True),
    ("-456", True),
    ("12.34", True),
    ("abc", False),
    ("12abc", False),
    ("1e10", True),
    ("NaN", False),
    ("Infinity", False),
)

EMAIL_INPUTS = (
    ("test@example.com", True),
    ("user.name@domain.co.th", True),
    ("invalid@", False),
    ("@invalid.com", False),
    ("no-at-sign.com", False),
    ("test@domain", False),
)

XSS_VECTORS = (
    ("Basic script tag", '<script>alert("XSS")</script>'),
    ("Image onerror", '<img src=x onerror=alert("XSS")>'),
    ("SVG onload", '<svg/onload=alert("XSS")>'),
    ("JavaScript URL", "<a href=\"javascript:alert('XSS')\">Click</a>"),
    ("Event handler", "<div onmouseover=\"alert('XSS')\">Hover</div>"),
    ("Data URL iframe", "<iframe src=\"data:text/html,<script>alert('XSS')</script>\"></iframe>"),
    ("Style expression", "<style>body{background:url(\"javascript:alert('XSS')\")}</style>"),
    ("Meta refresh", "<meta http-equiv=\"refresh\" content=\"0;url=javascript:alert('XSS')\">"),
)

# Categories whose failures are exploitable vulnerabilities.
CRITICAL_CATEGORIES = ("Input Validation", "XSS Prevention")


def sanitize_input(value: Any) -> Any:
    """Strip characters, comment markers and keywords used in SQL injection.

    Keyword removal repeats until the value is stable so that nested
    keywords ("DRDROPOP") cannot reassemble. Non-string values are returned
    unchanged.
    """
    if not isinstance(value, str):
        return value
    sanitized = value.replace("\0", "")
    sanitized = re.sub(r"['\";\\]", "", sanitized)
    previous = None
    while sanitized != previous:
        previous = sanitized
        sanitized = re.sub(r"--|/\*|\*/", "", sanitized)
        for keyword in SQL_KEYWORDS:
            sanitized = re.sub(keyword, "", sanitized, flags=re.IGNORECASE)
    return sanitized


def escape_html(value: Any) -> Any:
    """Escape the characters that are significant in HTML text."""
    if not isinstance(value, str):
        return value
    return re.sub(r"[&<>\"'/]", lambda m: HTML_ESCAPES[m.group(0)], value)


def sanitize_html(value: Any) -> Any:
    """Escape HTML and defuse ``javascript:`` URLs and inline event handlers."""
    if not isinstance(value, str):
        return value
    escaped = escape_html(value)
    escaped = re.sub(r"(javascript):", r"\1&#x3A;", escaped, flags=re.IGNORECASE)
    return re.sub(r"(on\w+)\s*=", r"\1&#x3D;", escaped, flags=re.IGNORECASE)


def escape_attribute(value: Any) -> Any:
    """Escape every non-alphanumeric character for use in an attribute value."""
    if not isinstance(value, str):
        return value
    return "".join(c if c.isalnum() or ord(c) > 255 else f"&#x{ord(c):02X};" for c in value)


def escape_javascript(value: Any) -> Any:
    """Escape a value for use inside a JavaScript string literal."""
    if not isinstance(value, str):
        return value
    return (
        value.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("'", "\\'")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
        .replace("\t", "\\t")
    )


def contains_sql_injection(value: str) -> bool:
    return any(p.search(value) for p in SQL_INJECTION_PATTERNS)


def contains_script_tags(value: str) -> bool:
    return any(p.search(value) for p in SCRIPT_PATTERNS)


def contains_event_handlers(value: str) -> bool:
    return EVENT_HANDLER_PATTERN.search(value) is not None


def contains_dangerous_chars(value: str) -> bool:
    return DANGEROUS_PATTERN.search(value) is not None


def is_valid_number(value: Any) -> bool:
    """Return True for finite numbers and non-blank numeric strings."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return math.isfinite(value)
    if isinstance(value, str) and value.strip():
        try:
            return math.isfinite(float(value))
        except ValueError:
            return False
    return False


def is_valid_email(value: str) -> bool:
    return EMAIL_PATTERN.match(value) is not None


def generate_csrf_token() -> str:
    """Return a random 64-character hex token."""
    return secrets.token_hex(32)


def validate_csrf_token(provided: str | None, expected: str | None) -> bool:
    """Compare a submitted token with the session token in constant time."""
    if not provided or not expected:
        return False
    return secrets.compare_digest(provided, expected)


@dataclass(frozen=True)
class RequestCheck:
    """Outcome of validating a request's CSRF protection."""

    valid: bool
    reason: str


def validate_request(
    method: str,
    headers: Mapping[str, str],
    session_token: str | None = None,
) -> RequestCheck:
    """Check the CSRF token of a request.

    GET requests are exempt. Other methods must send the session's token in
    the ``X-CSRF-Token`` header (matched case-insensitively).
    """
    if method.upper() == "GET":
        return RequestCheck(True, "GET request")
    token = next((v for k, v in headers.items() if k.lower() == CSRF_HEADER.lower()), None)
    if not token:
        return RequestCheck(False, "Missing CSRF token")
    if not session_token:
        return RequestCheck(False, "No session token")
    if not validate_csrf_token(token, session_token):
        return RequestCheck(False, "Invalid CSRF token")
    return RequestCheck(True, "Valid CSRF token")


def check_cors_origin(origin: str, allowed: Iterable[str]) -> bool:
    return origin in set(allowed)


def cors_headers(origin: str, allowed: Iterable[str]) -> dict[str, str]:
    """Return the CORS response headers for an origin.

    Disallowed origins get no ``Access-Control-Allow-Origin`` header.
    """
    headers = {
        "Access-Control-Allow-Methods": CORS_METHODS,
        "Access-Control-Allow-Headers": CORS_HEADERS,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Max-Age": CORS_MAX_AGE,
    }
    if check_cors_origin(origin, allowed):
        headers = {"Access-Control-Allow-Origin": origin, **headers}
    return headers


def handle_preflight(origin: str, allowed: Iterable[str]) -> tuple[int, dict[str, str]]:
    """Answer a CORS preflight request with a status code and headers."""
    allowed = tuple(allowed)
    if not check_cors_origin(origin, allowed):
        return 403, {}
    return 204, cors_headers(origin, allowed)


def expect_failure_response(name: str, action: Any, requirement: str) -> Scenario:
    """Build a scenario expecting the API to answer with an error status."""
    return expect_success(
        name,
        action,
        requirement,
        check=lambda r: not r.is_success,
        describe=lambda r: (
            f"Correctly rejected: {r.message or 'error status'}" if not r.is_success else "Request was accepted"
        ),
    )


class SecurityModule(TestModule):
    """Authentication, authorization and input-handling checks.

    The score is the success rate minus 10 points per failed check in a
    critical category (injection and XSS).
    """

    name = "Security Testing"
    key = "security"
    requirements = ("8.1", "8.2", "8.3", "8.4", "8.5", "8.6", "8.7", "8.8", "8.9", "8.10")

    def _authenticate(self, key: str) -> Any:
        return call_api(self.context, "authenticate", user_key=key)

    @category("Authentication")
    async def test_authentication(self) -> list[Scenario]:
        scenarios = [
            expect_success(
                f"Valid {role} authentication",
                lambda role=role: self._authenticate(user_key(self.context, role)),
                "8.1",
                check=lambda r: r.is_success,
                describe=lambda r, role=role: (
                    f"Successfully authenticated valid {role} user"
                    if r.is_success
                    else f"Failed to authenticate valid user: {r.message}"
                ),
            )
            for role in ROLES
        ]
        scenarios.append(
            expect_failure_response(
                "Invalid user authentication",
                lambda: self._authenticate("nonexistent@test.com"),
                "8.1",
            )
        )
        scenarios.append(
            expect_failure_response(
                "Empty credentials authentication", lambda: self._authenticate(""), "8.1"
            )
        )
        scenarios.append(
            expect_failure_response(
                "Inactive user authentication",
                lambda: self._authenticate(user_key(self.context, "INACTIVE")),
                "8.5",
            )
        )
        inactive = user_key(self.context, "INACTIVE")
        for action in ("addSale", "getReport"):
            scenarios.append(
                expect_failure_response(
                    f"Inactive user - {action}",
                    lambda action=action: call_api(
                        self.context, action, user_key=inactive, **OPERATION_PARAMS[action]
                    ),
                    "8.5",
                )
            )
        return scenarios

    @category("Authorization")
    async def test_authorization(self) -> list[Scenario]:
        scenarios = []
        for role in ROLES:
            key = user_key(self.context, role)
            for action in SECURITY_OPERATIONS:
                allowed = action in ROLE_PERMISSIONS[role]

                def holds(r: ApiResponse, allowed: bool = allowed) -> bool:
                    denied = not r.is_success and "permission" in (r.message or "").lower()
                    return denied != allowed

                scenarios.append(
                    expect_success(
                        f"{action} - {role} role",
                        lambda action=action, key=key: call_api(
                            self.context, action, user_key=key, **OPERATION_PARAMS[action]
                        ),
                        AUTHORIZATION_REQUIREMENTS[role],
                        check=holds,
                        describe=lambda r, role=role, action=action, allowed=allowed, holds=holds: (
                            f"{role} {'may' if allowed else 'may not'} {action}"
                            if holds(r)
                            else f"{role} {'was denied' if allowed else 'was allowed'} {action}"
                        ),
                    )
                )
        return scenarios

    @category("Input Validation")
    async def test_input_validation(self) -> list[TestResult]:
        results = []
        for payload in SQL_INJECTION_PAYLOADS:
            sanitized = sanitize_input(payload)
            safe = not contains_sql_injection(sanitized)
            results.append(
                check(
                    "SQL injection prevention",
                    safe,
                    "8.7",
                    "Successfully sanitized SQL injection attempt"
                    if safe
                    else "Failed to sanitize SQL injection",
                    payload=payload,
                    sanitized=sanitized,
                )
            )

        for payload in SCRIPT_PAYLOADS:
            sanitized = sanitize_html(sanitize_input(payload))
            safe = not contains_script_tags(sanitized)
            results.append(
                check(
                    "Script injection prevention",
                    safe,
                    "8.6",
                    "Successfully sanitized script injection" if safe else "Failed to sanitize script tags",
                    payload=payload,
                    sanitized=sanitized,
                )
            )

        for value, expected in SPECIAL_CHARACTERS:
            escaped = escape_html(value)
            results.append(
                check(
                    "Special character escaping",
                    escaped == expected,
                    "8.6",
                    f"Escaped {value!r} as {escaped!r}",
                    expected=expected,
                )
            )

        for value, valid in NUMERIC_INPUTS:
            actual = is_valid_number(value)
            results.append(
                check(
                    "Numeric input validation",
                    actual == valid,
                    "8.6",
                    f"Correctly validated numeric input: {value}"
                    if actual == valid
                    else f"Failed to validate numeric input: {value}",
                )
            )

        for value, valid in EMAIL_INPUTS:
            actual = is_valid_email(value)
            results.append(
                check(
                    "Email validation",
                    actual == valid,
                    "8.6",
                    f"Correctly validated email: {value}"
                    if actual == valid
                    else f"Failed to validate email: {value}",
                )
            )
        return results

    @category("XSS Prevention")
    async def test_xss_prevention(self) -> list[TestResult]:
        results = []
        for name, payload in XSS_VECTORS:
            escaped = sanitize_html(payload)
            safe = not contains_script_tags(escaped) and not contains_event_handlers(escaped)
            results.append(
                check(
                    f"XSS prevention - {name}",
                    safe,
                    "8.8",
                    f"Successfully prevented XSS: {name}" if safe else f"Failed to prevent XSS: {name}",
                    escaped=escaped,
                )
            )

        contexts = (
            ("User input in HTML", '<script>alert("test")</script>', escape_html),
            ("User input in attribute", "\" onload=\"alert('XSS')\"", escape_attribute),
            ("User input in JavaScript", '"; alert("XSS"); "', escape_javascript),
        )
        for name, value, escape in contexts:
            escaped = escape(value)
            safe = not contains_dangerous_chars(escaped)
            results.append(
                check(
                    name,
                    safe,
                    "8.8",
                    f"Successfully escaped content in {name}" if safe else f"Failed to escape content in {name}",
                    escaped=escaped,
                )
            )
        return results

    @category("CSRF Protection")
    async def test_csrf_protection(self) -> list[TestResult]:
        first, second = generate_csrf_token(), generate_csrf_token()
        token = generate_csrf_token()
        missing = validate_request("POST", {})
        accepted = validate_request("POST", {CSRF_HEADER: token}, session_token=token)
        forged = validate_request("POST", {CSRF_HEADER: "invalid-token-12345"}, session_token=token)
        return [
            check(
                "CSRF token generation",
                first != second and len(first) >= 32,
                "8.9",
                f"Generated unique tokens of {len(first)} characters",
            ),
            check(
                "CSRF token validation",
                validate_csrf_token(token, token) and not validate_csrf_token("invalid-token-12345", token),
                "8.9",
            ),
            check("Request without CSRF token", not missing.valid, "8.9", missing.reason),
            check("Request with valid CSRF token", accepted.valid, "8.9", accepted.reason),
            check("Request with forged CSRF token", not forged.valid, "8.9", forged.reason),
        ]

    @category("CORS Handling")
    async def test_cors_handling(self) -> list[TestResult]:
        allowed = tuple(self.context.fixture("allowed_origins", DEFAULT_ALLOWED_ORIGINS))
        results = [
            check(
                f"CORS - Allowed origin: {origin}",
                check_cors_origin(origin, allowed),
                "8.10",
            )
            for origin in allowed
        ]
        for origin in ("https://malicious.com", "http://evil.com", "https://phishing-example.com"):
            results.append(
                check(
                    f"CORS - Disallowed origin: {origin}",
                    not check_cors_origin(origin, allowed),
                    "8.10",
                )
            )

        origin = allowed[0] if allowed else "https://example.com"
        headers = cors_headers(origin, allowed)
        required = ("Access-Control-Allow-Origin", "Access-Control-Allow-Methods", "Access-Control-Allow-Headers")
        missing = [name for name in required if name not in headers]
        results.append(
            check(
                "CORS headers",
                not missing,
                "8.10",
                "CORS headers set correctly" if not missing else f"Missing CORS headers: {', '.join(missing)}",
            )
        )
        status, preflight = handle_preflight(origin, allowed)
        results.append(
            check(
                "CORS preflight request",
                status in (200, 204) and "Access-Control-Allow-Origin" in preflight,
                "8.10",
                f"Preflight answered with {status}",
            )
        )
        return results

    def score(self) -> float:
        critical = sum(
            len(s.failures) for s in self.summaries if s.name in CRITICAL_CATEGORIES
        )
        return max(0.0, self.counts.success_rate - critical * 10.0)

    def recommendations(self, report: ModuleReport) -> list[Recommendation]:
        found = []
        for summary in report.categories:
            if not summary.failures:
                continue
            critical = summary.name in CRITICAL_CATEGORIES
            found.append(
                Recommendation(
                    category="Security",
                    priority="critical" if critical else "high",
                    issue=f"{summary.name}: {len(summary.failures)} checks failed",
                    solution=(
                        "Sanitize and escape every user-supplied value before use"
                        if critical
                        else f"Review {summary.name.lower()} for the affected roles and requests"
                    ),
                    requirements=tuple(sorted({r.requirement for r in summary.failures if r.requirement})),
                )
            )
        return found
