"""Run configuration loading for posqa-runner.

A run config selects the modules to execute and supplies the API endpoint,
thresholds, fixtures, client environment snapshot, reporting options and
CI behaviour in a single YAML file. Every section is optional.

Example YAML:
    environment:
      api_url: "https://script.google.com/macros/s/XXXX/exec"
      timeout: 10
      retries: 3
      concurrency: 4

    modules:
      functional: true
      accessibility: false

    thresholds:
      success_rate: 95
      api_response_ms: 2000

    reporting:
      formats: [html, json]
      output_dir: "test/reports"

    ci:
      enabled: true
      required_tests: [api, security]
      webhooks:
        on_failure: "https://hooks.example.com/posqa"

    client:
      html_path: "pages/index.html"

    store:
      path: "posqa.db"
"""

from __future__ import annotations

import dataclasses
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from posqa_client.config import ApiConfig

from posqa_testcase.environment import ClientEnvironment

from posqa_modules import ALL_MODULES

logger = logging.getLogger(__name__)

API_URL_ENV = "POSQA_API_URL"

MODULE_KEYS = tuple(module.key for module in ALL_MODULES)

REPORT_FORMATS = ("html", "json", "csv")

DEFAULT_THRESHOLDS: dict[str, float] = {
    "success_rate": 95.0,
    "regression": 5.0,
    "accessibility": 95.0,
    "performance": 90.0,
    "cross_browser": 90.0,
    "api_response_ms": 2000.0,
    "cache_ms": 250.0,
    "load_ms": 1000.0,
    "concurrent_ms": 50.0,
    "offline_ms": 500.0,
    "search_ms": 300.0,
}

DEFAULT_REQUIREMENTS: dict[str, str] = {
    "1.1": "Required sheets exist",
    "1.2": "Sheet column mappings",
    "1.3": "Column data types",
    "1.4": "Sheet relationships map",
    "1.5": "Sheet mapping report",
    "2.1": "getBootstrapData endpoint",
    "2.2": "searchIngredients endpoint",
    "2.3": "getIngredientMap endpoint",
    "2.4": "addPurchase endpoint",
    "2.5": "addSale endpoint",
    "2.6": "getReport endpoint",
    "2.7": "getLowStockHTML endpoint",
    "2.8": "Invalid action handling",
    "2.9": "Missing parameter handling",
    "2.10": "Error response format",
    "3.1": "Purchase recording",
    "3.2": "Sales recording",
    "3.3": "Menu management",
    "3.4": "Ingredient search",
    "3.5": "Stock management",
    "3.6": "Low stock alerts",
    "3.7": "Cost calculation",
    "3.8": "Platform fee calculation",
    "3.10": "User permissions",
    "4.1": "Ingredient references",
    "4.2": "Menu references",
    "4.3": "Lot references",
    "4.4": "User references",
    "4.5": "Calculated columns",
    "4.6": "Required fields",
    "4.8": "Orphaned records",
    "4.9": "Column data types",
    "5.1": "Cache performance",
    "5.2": "API response times",
    "5.5": "Large dataset loading",
    "5.6": "Concurrent operations",
    "5.7": "Offline mode performance",
    "5.9": "Search performance",
    "6.1": "Chrome desktop",
    "6.2": "Firefox desktop",
    "6.3": "Safari desktop",
    "6.4": "Edge desktop",
    "6.5": "Mobile phones",
    "6.6": "Tablets",
    "6.7": "Viewport layouts",
    "6.8": "PWA installation",
    "6.9": "Touch support on devices",
    "6.10": "Touch interactions and responsive breakpoints",
    "7.1": "Service worker registration",
    "7.2": "Offline indicator",
    "7.3": "Viewing cached data offline",
    "7.4": "Offline transactions",
    "7.5": "Automatic sync",
    "7.6": "Sync conflict detection",
    "7.7": "Service worker updates",
    "7.8": "Cache strategy",
    "7.9": "Background sync retry",
    "7.10": "Conflict resolution strategies",
    "8.1": "User authentication",
    "8.2": "OWNER role access",
    "8.3": "PARTNER role access",
    "8.4": "STAFF role access",
    "8.5": "Inactive user access",
    "8.6": "Input validation",
    "8.7": "SQL injection prevention",
    "8.8": "XSS prevention",
    "8.9": "CSRF protection",
    "8.10": "CORS handling",
    "9.1": "Network error handling",
    "9.2": "API failure retry",
    "9.3": "Validation error display",
    "9.5": "Data conflict resolution",
    "9.6": "Cache corruption recovery",
    "9.7": "Storage full handling",
    "9.8": "User-facing error messages",
    "9.9": "Timeout error handling",
    "10.1": "Daily reports",
    "10.2": "Weekly reports",
    "10.3": "Monthly reports",
    "10.4": "Platform analysis",
    "10.5": "Menu performance",
    "10.6": "Ingredient usage",
    "10.7": "Cost trends",
    "10.8": "Profit margins",
    "10.9": "Export functionality",
}


@dataclass(frozen=True)
class EnvironmentConfig:
    """Backend endpoint and run settings.

    Attributes:
        api_url: POS API endpoint. Empty means unconfigured.
        app_url: URL of the POS web application, for reports.
        timeout: Per-request timeout in seconds.
        retries: Extra attempts after a timeout or connection failure.
        retry_delay: Delay before the first retry, in seconds.
        concurrency: Maximum number of modules running at once.
    """

    api_url: str = ""
    app_url: str = ""
    timeout: float = 10.0
    retries: int = 3
    retry_delay: float = 0.5
    concurrency: int = 4

    def api_config(self) -> ApiConfig:
        """Return the API client configuration."""
        return ApiConfig.from_dict(
            {
                "api_url": self.api_url,
                "timeout": self.timeout,
                "retries": self.retries,
                "retry_delay": self.retry_delay,
            }
        )


@dataclass(frozen=True)
class ReportingConfig:
    """Report rendering and history settings.

    Attributes:
        formats: Report formats to write (html, json, csv).
        output_dir: Directory reports are written to.
        save_history: Whether each run's summary is persisted.
        history_size: Number of summaries kept in the history.
    """

    formats: tuple[str, ...] = REPORT_FORMATS
    output_dir: str = "test/reports"
    save_history: bool = True
    history_size: int = 10


@dataclass(frozen=True)
class WebhookConfig:
    """Webhook URLs notified after a CI run."""

    on_success: str | None = None
    on_failure: str | None = None


@dataclass(frozen=True)
class CiConfig:
    """CI gate settings.

    Attributes:
        enabled: Whether the CI gate is applied by default.
        fail_on_regression: Fail when a module score regressed.
        regression_threshold: Score drop, in points, counted as a regression.
        required_tests: Module keys that must have run.
        webhooks: Notification targets.
    """

    enabled: bool = False
    fail_on_regression: bool = True
    regression_threshold: float = 5.0
    required_tests: tuple[str, ...] = ()
    webhooks: WebhookConfig = field(default_factory=WebhookConfig)


@dataclass(frozen=True)
class MonitorConfig:
    """Continuous monitoring settings.

    Attributes:
        interval_ms: Delay between monitoring cycles.
        window: Number of cycle summaries kept in memory (one day at 5 minutes).
    """

    interval_ms: int = 300_000
    window: int = 288


@dataclass(frozen=True)
class RunnerConfig:
    """Complete run configuration.

    Attributes:
        environment: Backend endpoint and run settings.
        modules: Enabled flag by module key.
        thresholds: Named thresholds shared by the modules and the orchestrator.
        fixtures: Named fixture values handed to the modules.
        reporting: Report rendering and history settings.
        ci: CI gate settings.
        monitor: Continuous monitoring settings.
        client: Client environment snapshot.
        requirements: Requirement catalog (reference to description).
        store_path: SQLite database path, or ":memory:".
        source_path: File the config was loaded from, if any.
    """

    environment: EnvironmentConfig = field(default_factory=EnvironmentConfig)
    modules: Mapping[str, bool] = field(default_factory=lambda: {key: True for key in MODULE_KEYS})
    thresholds: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_THRESHOLDS))
    fixtures: Mapping[str, Any] = field(default_factory=dict)
    reporting: ReportingConfig = field(default_factory=ReportingConfig)
    ci: CiConfig = field(default_factory=CiConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    client: ClientEnvironment = field(default_factory=ClientEnvironment)
    requirements: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_REQUIREMENTS))
    store_path: str = ":memory:"
    source_path: Path | None = None

    @property
    def enabled_modules(self) -> list[str]:
        """Return the keys of the enabled modules, in registry order."""
        return [key for key in MODULE_KEYS if self.modules.get(key, False)]

    def threshold(self, name: str) -> float:
        """Return a named threshold.

        Raises:
            KeyError: If the threshold is neither configured nor defaulted.
        """
        if name in self.thresholds:
            return float(self.thresholds[name])
        return DEFAULT_THRESHOLDS[name]


def default_config() -> RunnerConfig:
    """Return the configuration used when no file is given."""
    return RunnerConfig()


def _section(data: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = data.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{name} must be a mapping")
    return value


def _parse_environment(data: Mapping[str, Any]) -> EnvironmentConfig:
    defaults = EnvironmentConfig()
    concurrency = int(data.get("concurrency", defaults.concurrency))
    if concurrency < 1:
        raise ValueError(f"environment.concurrency must be at least 1: {concurrency}")
    return EnvironmentConfig(
        api_url=str(data.get("api_url") or ""),
        app_url=str(data.get("app_url") or ""),
        timeout=float(data.get("timeout", defaults.timeout)),
        retries=int(data.get("retries", defaults.retries)),
        retry_delay=float(data.get("retry_delay", defaults.retry_delay)),
        concurrency=concurrency,
    )


def _parse_modules(data: Mapping[str, Any]) -> dict[str, bool]:
    modules = {key: True for key in MODULE_KEYS}
    for key, enabled in data.items():
        if key not in MODULE_KEYS:
            raise ValueError(f"Unknown module: {key} (known: {', '.join(MODULE_KEYS)})")
        modules[key] = bool(enabled)
    return modules


def _parse_thresholds(data: Mapping[str, Any]) -> dict[str, float]:
    thresholds = dict(DEFAULT_THRESHOLDS)
    for name, value in data.items():
        try:
            thresholds[name] = float(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Threshold {name} must be a number: {value!r}") from exc
    return thresholds


def _parse_reporting(data: Mapping[str, Any]) -> ReportingConfig:
    defaults = ReportingConfig()
    formats = data.get("formats", list(defaults.formats))
    if isinstance(formats, str):
        formats = [f.strip() for f in formats.split(",") if f.strip()]
    if not isinstance(formats, list):
        raise ValueError("reporting.formats must be a list")
    for fmt in formats:
        if fmt not in REPORT_FORMATS:
            raise ValueError(f"Unknown report format: {fmt}")
    history_size = int(data.get("history_size", defaults.history_size))
    if history_size < 1:
        raise ValueError(f"reporting.history_size must be at least 1: {history_size}")
    return ReportingConfig(
        formats=tuple(formats),
        output_dir=str(data.get("output_dir", defaults.output_dir)),
        save_history=bool(data.get("save_history", defaults.save_history)),
        history_size=history_size,
    )


def _parse_ci(data: Mapping[str, Any]) -> CiConfig:
    defaults = CiConfig()
    required = data.get("required_tests", [])
    if not isinstance(required, list):
        raise ValueError("ci.required_tests must be a list")
    for key in required:
        if key not in MODULE_KEYS:
            raise ValueError(f"Unknown module in ci.required_tests: {key}")
    webhooks = _section(data, "webhooks")
    return CiConfig(
        enabled=bool(data.get("enabled", defaults.enabled)),
        fail_on_regression=bool(data.get("fail_on_regression", defaults.fail_on_regression)),
        regression_threshold=float(data.get("regression_threshold", defaults.regression_threshold)),
        required_tests=tuple(required),
        webhooks=WebhookConfig(
            on_success=webhooks.get("on_success"),
            on_failure=webhooks.get("on_failure"),
        ),
    )


def _parse_monitor(data: Mapping[str, Any]) -> MonitorConfig:
    defaults = MonitorConfig()
    interval_ms = int(data.get("interval_ms", defaults.interval_ms))
    window = int(data.get("window", defaults.window))
    if interval_ms <= 0:
        raise ValueError(f"monitor.interval_ms must be positive: {interval_ms}")
    if window < 2:
        raise ValueError(f"monitor.window must be at least 2: {window}")
    return MonitorConfig(interval_ms=interval_ms, window=window)


def parse_config(data: Mapping[str, Any], base_dir: Path | None = None) -> RunnerConfig:
    """Build a configuration from a parsed YAML mapping.

    Args:
        data: The parsed mapping.
        base_dir: Directory relative paths resolve against.

    Returns:
        Parsed RunnerConfig. Omitted sections keep their defaults.

    Raises:
        ValueError: If a section has the wrong shape or an unknown name.
        FileNotFoundError: If ``client.html_path`` does not exist.
    """
    requirements = _section(data, "requirements")
    store_path = str(_section(data, "store").get("path", ":memory:"))
    if store_path != ":memory:" and base_dir is not None and not Path(store_path).is_absolute():
        store_path = str(base_dir / store_path)

    return RunnerConfig(
        environment=_parse_environment(_section(data, "environment")),
        modules=_parse_modules(_section(data, "modules")),
        thresholds=_parse_thresholds(_section(data, "thresholds")),
        fixtures=dict(_section(data, "fixtures")),
        reporting=_parse_reporting(_section(data, "reporting")),
        ci=_parse_ci(_section(data, "ci")),
        monitor=_parse_monitor(_section(data, "monitor")),
        client=ClientEnvironment.from_dict(_section(data, "client"), base_dir=base_dir),
        requirements={str(k): str(v) for k, v in requirements.items()} or dict(DEFAULT_REQUIREMENTS),
        store_path=store_path,
    )


def load_config(path: str | Path) -> RunnerConfig:
    """Load a run configuration from a YAML file.

    Args:
        path: Path to the configuration YAML file.

    Returns:
        Parsed RunnerConfig.

    Raises:
        FileNotFoundError: If the config file doesn't exist.
        ValueError: If the file is not a mapping or a section is invalid.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Run config not found: {path}")

    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError("Run config must be a YAML mapping")

    config = parse_config(data, base_dir=path.parent)
    logger.debug("Loaded run config from %s", path)
    return dataclasses.replace(config, source_path=path)


def apply_env_overrides(config: RunnerConfig, environ: Mapping[str, str] | None = None) -> RunnerConfig:
    """Return the config with environment variable overrides applied.

    ``POSQA_API_URL`` replaces ``environment.api_url`` when set.
    """
    environ = os.environ if environ is None else environ
    api_url = environ.get(API_URL_ENV)
    if not api_url:
        return config
    logger.debug("Using API URL from %s", API_URL_ENV)
    environment = dataclasses.replace(config.environment, api_url=api_url)
    return dataclasses.replace(config, environment=environment)
