"""
Validate-and-project helpers.

Call sites branch on ``ValidationOutcome.success`` instead of catching
pydantic exceptions, so per-record failures can be collected and returned.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ValidationError

from finops.models.types import PROJECT_ID_PATTERN, TENANT_ID_PATTERN

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class ValidationOutcome(Generic[ModelT]):
    """Typed result of validating one record: a model or a list of errors."""

    value: Optional[ModelT] = None
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.value is not None and not self.errors


def format_validation_errors(exc: ValidationError) -> list[str]:
    """Render pydantic errors as ``path: message`` strings."""
    messages = []
    for error in exc.errors():
        path = ".".join(str(part) for part in error["loc"])
        messages.append(f"{path}: {error['msg']}" if path else error["msg"])
    return messages


def validate_record(model: type[ModelT], data: Any) -> ValidationOutcome[ModelT]:
    """
    Validate ``data`` against ``model`` without raising.

    Args:
        model: Pydantic model class describing the expected shape
        data: Untyped input (usually a dict parsed from JSON)

    Returns:
        ValidationOutcome with either ``value`` or ``errors`` populated

    Example:
        >>> outcome = validate_record(BillingEvent, raw)
        >>> if not outcome.success:
        ...     print(", ".join(outcome.errors))
    """
    try:
        return ValidationOutcome(value=model.model_validate(data))
    except ValidationError as exc:
        return ValidationOutcome(errors=format_validation_errors(exc))


@dataclass(frozen=True)
class TenantValidation:
    valid: bool
    error: Optional[str] = None


def validate_tenant_context(tenant_id: Any, project_id: Any) -> TenantValidation:
    """Check tenant and project identifiers before any data is processed."""
    if not isinstance(tenant_id, str) or not tenant_id:
        return TenantValidation(valid=False, error="tenant_id is required")
    if not re.match(TENANT_ID_PATTERN, tenant_id):
        return TenantValidation(
            valid=False,
            error=f"Invalid tenant_id '{tenant_id}': use lowercase letters, digits and hyphens",
        )
    if not isinstance(project_id, str) or not project_id:
        return TenantValidation(valid=False, error="project_id is required")
    if not re.match(PROJECT_ID_PATTERN, project_id):
        return TenantValidation(
            valid=False,
            error=(
                f"Invalid project_id '{project_id}': "
                "use lowercase letters, digits, hyphens and underscores"
            ),
        )
    return TenantValidation(valid=True)
