"""Declarative input validation.

Validation never raises on bad input: it returns a ValidationResult listing
every issue as ``{field, message, type}`` plus the set of fields a form
should highlight. Callers that need an exception use ``raise_for_errors``.

Example:
    >>> rules = [
    ...     FieldRule("ingredient_id", required=True),
    ...     FieldRule("qty_buy", required=True, kind=float, minimum=0.01),
    ... ]
    >>> result = validate({"qty_buy": -1}, rules)
    >>> result.highlighted_fields
    ('ingredient_id', 'qty_buy')
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from posqa_core.errors import ValidationFailed


class IssueType(Enum):
    """Kinds of validation issue."""

    REQUIRED = "required"
    TYPE = "type"
    RANGE = "range"


@dataclass(frozen=True)
class ValidationIssue:
    """One validation issue.

    Attributes:
        field: Name of the offending field.
        message: User-facing explanation.
        type: Kind of issue.
    """

    field: str
    message: str
    type: IssueType

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for serialization."""
        return {"field": self.field, "message": self.message, "type": self.type.value}


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating one input mapping.

    Attributes:
        errors: Issues in rule order.
    """

    errors: tuple[ValidationIssue, ...] = ()

    @property
    def valid(self) -> bool:
        """Return True when there are no issues."""
        return not self.errors

    @property
    def highlighted_fields(self) -> tuple[str, ...]:
        """Return the offending fields, deduplicated, in first-seen order."""
        return tuple(dict.fromkeys(issue.field for issue in self.errors))

    def for_field(self, name: str) -> tuple[ValidationIssue, ...]:
        """Return the issues reported for one field."""
        return tuple(issue for issue in self.errors if issue.field == name)

    def raise_for_errors(self) -> None:
        """Raise ValidationFailed if there are issues.

        Raises:
            ValidationFailed: If the result is not valid.
        """
        if not self.valid:
            raise ValidationFailed(self)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "valid": self.valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "highlighted_fields": list(self.highlighted_fields),
        }


@dataclass(frozen=True)
class FieldRule:
    """Validation rule for one field.

    Attributes:
        name: Field name.
        required: Reject missing, None or blank values.
        kind: Expected type; numeric kinds accept numeric strings.
        minimum: Inclusive lower bound for numeric values.
        maximum: Inclusive upper bound for numeric values.
        label: Display name used in messages (defaults to ``name``).
    """

    name: str
    required: bool = False
    kind: type | None = None
    minimum: float | None = None
    maximum: float | None = None
    label: str | None = None

    @property
    def display(self) -> str:
        """Return the label used in messages."""
        return self.label or self.name.replace("_", " ")

    def check(self, value: Any) -> ValidationIssue | None:
        """Check one value and return the first issue found, if any."""
        if value is None or (isinstance(value, str) and not value.strip()):
            if self.required:
                return ValidationIssue(self.name, f"{self.display} is required", IssueType.REQUIRED)
            return None

        if self.kind is not None:
            converted = _coerce(value, self.kind)
            if converted is None:
                expected = "number" if self.kind in (int, float) else self.kind.__name__
                return ValidationIssue(
                    self.name,
                    f"{self.display} must be a {expected}",
                    IssueType.TYPE,
                )
            value = converted

        if self.minimum is not None or self.maximum is not None:
            if not isinstance(value, (int, float)) or isinstance(value, bool):
                return ValidationIssue(
                    self.name, f"{self.display} must be a number", IssueType.TYPE
                )
            if self.minimum is not None and value < self.minimum:
                return ValidationIssue(
                    self.name,
                    f"{self.display} must be at least {self.minimum:g}",
                    IssueType.RANGE,
                )
            if self.maximum is not None and value > self.maximum:
                return ValidationIssue(
                    self.name,
                    f"{self.display} must be at most {self.maximum:g}",
                    IssueType.RANGE,
                )
        return None


def _coerce(value: Any, kind: type) -> Any:
    """Convert a value to ``kind``, returning None when impossible."""
    if isinstance(value, bool) and kind in (int, float):
        return None
    if isinstance(value, kind):
        return value
    if kind in (int, float):
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
        if kind is int:
            return int(number) if number.is_integer() else None
        return number
    return None


def validate(data: Mapping[str, Any], rules: Iterable[FieldRule]) -> ValidationResult:
    """Validate a mapping of field values against a set of rules."""
    issues = []
    for rule in rules:
        issue = rule.check(data.get(rule.name))
        if issue is not None:
            issues.append(issue)
    return ValidationResult(errors=tuple(issues))
