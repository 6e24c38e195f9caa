"""Structured validation diagnostics shared by every pipeline stage.

Components never raise for questionable values. They accumulate
ValidationError / ValidationWarning records in a ValidationResult and hand
it back to the caller, which decides whether the computation can continue.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Severity(str, Enum):
    """How badly an error compromises the result."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class ValidationError:
    """A blocking problem found while checking a calculation."""

    code: str
    message: str
    severity: Severity
    component: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
            "component": self.component,
            "details": self.details,
        }


@dataclass(frozen=True)
class ValidationWarning:
    """A non-blocking observation with a suggested remediation."""

    code: str
    message: str
    component: str
    remediation: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "component": self.component,
            "remediation": self.remediation,
            "details": self.details,
        }


@dataclass
class ValidationResult:
    """Errors and warnings collected for one calculation."""

    errors: list[ValidationError] = field(default_factory=list)
    warnings: list[ValidationWarning] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def has_critical(self) -> bool:
        return any(e.severity == Severity.CRITICAL for e in self.errors)

    def add_error(
        self,
        code: str,
        message: str,
        component: str,
        severity: Severity = Severity.HIGH,
        details: Optional[dict] = None,
    ) -> None:
        self.errors.append(
            ValidationError(code, message, severity, component, details or {})
        )

    def add_warning(
        self,
        code: str,
        message: str,
        component: str,
        remediation: str = "",
        details: Optional[dict] = None,
    ) -> None:
        self.warnings.append(
            ValidationWarning(code, message, component, remediation, details or {})
        )

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
        }
