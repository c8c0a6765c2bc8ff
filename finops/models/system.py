"""
Module health and capability models advertised to the job runner registry.
"""

from typing import Literal, Optional

from pydantic import BaseModel, Field

from .enums import HealthState


class HealthChecks(BaseModel):
    contracts: bool
    schemas: bool
    profiles: bool


class HealthStatus(BaseModel):
    status: HealthState
    module_id: str
    module_version: str
    timestamp: str
    checks: HealthChecks
    capabilities: list[str] = Field(default_factory=list)


class JobTypeCapability(BaseModel):
    job_type: str
    description: str
    input_schema: str
    output_schema: str
    idempotent: bool = True
    retryable: bool = True
    max_retries: int = Field(default=3, ge=0)
    timeout_seconds: int = Field(default=300, ge=0)
    required_context: list[str] = Field(default_factory=list)


class DLQSemantics(BaseModel):
    """Dead-letter queue behaviour the runner applies to this module's jobs."""

    enabled: bool = True
    max_attempts: int = Field(default=3, ge=0)
    backoff_strategy: Literal["exponential", "linear", "fixed"] = "exponential"
    backoff_initial_seconds: int = Field(default=1, ge=0)
    backoff_max_seconds: int = Field(default=60, ge=0)
    dead_letter_destination: Optional[str] = None
    retryable_errors: list[str] = Field(default_factory=list)
    non_retryable_errors: list[str] = Field(default_factory=list)


class CapabilityMetadata(BaseModel):
    module_id: str
    module_version: str
    schema_version: str
    job_types: list[JobTypeCapability]
    input_formats: list[str]
    output_formats: list[str]
    features: list[str]
    dlq_semantics: DLQSemantics


class RetryPolicy(BaseModel):
    retryable: bool
    max_attempts: int = Field(ge=0)
    backoff_seconds: int = Field(ge=0)
