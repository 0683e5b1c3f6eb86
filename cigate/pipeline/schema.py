"""Template schema definitions using Pydantic for validation.

This module defines the structure of cigate pipeline templates:
- Typed input schema (string, boolean, number, enum)
- Secret references required by a template
- Conditional job definitions with dependencies
- Gates applied to the metrics a job reports

Templates are frozen once validated; they are shared read-only across runs.
"""

import math
import re
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from cigate.errors import (
    ConditionSyntaxError,
    InvalidEnumValue,
    PatternMismatch,
    TypeMismatch,
    ValidationError as InputValidationError,
)
from cigate.pipeline import conditions

Scalar = Union[bool, int, float, str]

NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")

_TRUE_STRINGS = {"true", "yes", "1"}
_FALSE_STRINGS = {"false", "no", "0"}


def _check_name(value: str, what: str) -> str:
    if not NAME_PATTERN.match(value):
        raise ValueError(
            f"Invalid {what} {value!r}: must start with a letter or underscore "
            f"and contain only letters, digits, '_' or '-'"
        )
    return value


class InputKind(str, Enum):
    """Type of a template input."""
    STRING = "string"
    BOOLEAN = "boolean"
    NUMBER = "number"
    ENUM = "enum"


class GateComparator(str, Enum):
    """Comparison applied between a reported metric and its threshold."""
    GTE = ">="
    LTE = "<="
    EQ = "=="

    def compare(self, actual: float, threshold: float) -> bool:
        if self is GateComparator.GTE:
            return actual >= threshold
        if self is GateComparator.LTE:
            return actual <= threshold
        return actual == threshold


class InputSpec(BaseModel):
    """A typed input declared by a template.

    Examples:
        - name: language
          kind: enum
          allowed: [rust, python, node]
          required: true

        - name: coverage-threshold
          kind: number
          default: 80
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., description="Input name referenced by conditions and placeholders")
    kind: InputKind = Field(InputKind.STRING, description="Value type")
    description: Optional[str] = Field(None, description="Human-readable description")
    required: bool = Field(False, description="Whether the caller must supply a value")
    default: Optional[Scalar] = Field(None, description="Value used when the caller supplies none")
    allowed: Optional[Tuple[str, ...]] = Field(None, description="Allowed values (enum inputs only)")
    pattern: Optional[str] = Field(None, description="Regex a string value must fully match")

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _check_name(value, "input name")

    @model_validator(mode="after")
    def validate_kind_constraints(self):
        """Validate default/allowed/pattern are consistent with the kind."""
        if self.required and self.default is not None:
            raise ValueError(f"Input '{self.name}': required inputs cannot declare a default")

        if self.kind == InputKind.ENUM:
            if not self.allowed:
                raise ValueError(f"Input '{self.name}': enum inputs must list 'allowed' values")
        elif self.allowed is not None:
            raise ValueError(f"Input '{self.name}': 'allowed' is only valid for enum inputs")

        if self.pattern is not None:
            if self.kind != InputKind.STRING:
                raise ValueError(f"Input '{self.name}': 'pattern' is only valid for string inputs")
            try:
                re.compile(self.pattern)
            except re.error as e:
                raise ValueError(f"Input '{self.name}': invalid pattern {self.pattern!r}: {e}")

        if self.default is not None:
            try:
                self.coerce(self.default)
            except InputValidationError as e:
                raise ValueError(f"Input '{self.name}': invalid default: {e.message}")

        return self

    def coerce(self, raw: Any, template: Optional[str] = None) -> Scalar:
        """
        Coerce a raw caller value to this input's kind.

        Args:
            raw: Value as supplied (CLI strings, JSON scalars)
            template: Template name, for error context

        Returns:
            Typed value

        Raises:
            TypeMismatch: If the value cannot be converted
            InvalidEnumValue: If an enum value is not allowed
            PatternMismatch: If a string does not match the declared pattern
        """
        context = {"template": template, "input_name": self.name}

        if self.kind == InputKind.BOOLEAN:
            if isinstance(raw, bool):
                return raw
            if isinstance(raw, str):
                lowered = raw.strip().lower()
                if lowered in _TRUE_STRINGS:
                    return True
                if lowered in _FALSE_STRINGS:
                    return False
            raise TypeMismatch(f"Input '{self.name}' expects a boolean, got {raw!r}", **context)

        if self.kind == InputKind.NUMBER:
            if isinstance(raw, bool):
                raise TypeMismatch(f"Input '{self.name}' expects a number, got {raw!r}", **context)
            if isinstance(raw, (int, float)):
                value = raw
            elif isinstance(raw, str):
                text = raw.strip()
                try:
                    value = int(text)
                except ValueError:
                    try:
                        value = float(text)
                    except ValueError:
                        raise TypeMismatch(
                            f"Input '{self.name}' expects a number, got {raw!r}", **context
                        ) from None
            else:
                raise TypeMismatch(f"Input '{self.name}' expects a number, got {raw!r}", **context)
            if isinstance(value, float) and not math.isfinite(value):
                raise TypeMismatch(f"Input '{self.name}' expects a finite number, got {raw!r}", **context)
            return value

        if self.kind == InputKind.ENUM:
            if not isinstance(raw, str):
                raise TypeMismatch(f"Input '{self.name}' expects one of {list(self.allowed)}, got {raw!r}", **context)
            if raw not in self.allowed:
                raise InvalidEnumValue(
                    f"Input '{self.name}' must be one of {list(self.allowed)}, got {raw!r}", **context
                )
            return raw

        # string
        if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
            raise TypeMismatch(f"Input '{self.name}' expects a string, got {raw!r}", **context)
        value = raw if isinstance(raw, str) else str(raw)
        if self.pattern is not None and not re.fullmatch(self.pattern, value):
            raise PatternMismatch(
                f"Input '{self.name}' value {value!r} does not match pattern {self.pattern!r}", **context
            )
        return value


class SecretSpec(BaseModel):
    """A secret reference a template needs, optionally only under a condition.

    A plain string in the template source is shorthand for ``{name: ...}``.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., description="Secret reference name (e.g. 'CRATES_TOKEN')")
    when: Optional[str] = Field(None, description="Condition over inputs; required only when true")

    @model_validator(mode="before")
    @classmethod
    def accept_shorthand(cls, data: Any) -> Any:
        if isinstance(data, str):
            return {"name": data}
        return data

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        return _check_name(value, "secret name")

    @field_validator("when")
    @classmethod
    def validate_when(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                conditions.parse(value)
            except ConditionSyntaxError as e:
                raise ValueError(e.message)
        return value


class GateSpec(BaseModel):
    """Policy check applied to a metric reported by a job.

    Examples:
        # Fail when coverage drops under the caller's threshold
        metric: coverage-percent
        comparator: ">="
        threshold_input: coverage-threshold

        # No critical vulnerabilities allowed
        metric: vulnerabilities-critical
        comparator: "<="
        threshold: 0
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    metric: str = Field(..., min_length=1, description="Metric name reported by the job")
    comparator: GateComparator = Field(..., description="Comparison operator")
    threshold: Optional[Union[int, float]] = Field(None, description="Literal threshold")
    threshold_input: Optional[str] = Field(None, description="Number input supplying the threshold")

    @model_validator(mode="after")
    def validate_threshold_source(self):
        if (self.threshold is None) == (self.threshold_input is None):
            raise ValueError(
                f"Gate on '{self.metric}' must set exactly one of 'threshold' or 'threshold_input'"
            )
        return self

    def describe(self) -> str:
        source = self.threshold if self.threshold is not None else f"${{{{ inputs.{self.threshold_input} }}}}"
        return f"{self.metric} {self.comparator.value} {source}"


class JobSpec(BaseModel):
    """A job in a template.

    Each job:
    - Runs an opaque command on the execution backend
    - Runs only when its condition holds (absent = always)
    - Waits for the jobs listed in depends_on
    - May gate on metrics it reports
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., description="Unique job identifier (e.g. 'test', 'coverage')")
    description: Optional[str] = Field(None, description="Human-readable description")
    depends_on: Tuple[str, ...] = Field((), description="Job IDs that must succeed first")
    condition: Optional[str] = Field(None, description="Boolean expression over inputs")
    command: str = Field(..., min_length=1, description="Instruction for the execution backend")
    gates: Tuple[GateSpec, ...] = Field((), description="Gates applied to reported metrics")
    secrets: Tuple[str, ...] = Field((), description="Secret references forwarded to the backend")
    timeout_seconds: Optional[float] = Field(None, gt=0, description="Override the run's timeout")

    @field_validator("id")
    @classmethod
    def validate_id(cls, value: str) -> str:
        return _check_name(value, "job id")

    @field_validator("condition")
    @classmethod
    def validate_condition(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                conditions.parse(value)
            except ConditionSyntaxError as e:
                raise ValueError(e.message)
        return value

    @model_validator(mode="after")
    def validate_dependencies(self):
        if self.id in self.depends_on:
            raise ValueError(f"Job '{self.id}' cannot depend on itself")
        if len(set(self.depends_on)) != len(self.depends_on):
            raise ValueError(f"Job '{self.id}' lists a dependency more than once")
        return self


class Template(BaseModel):
    """Complete pipeline template.

    Defines the inputs a caller supplies, the secrets it must reference,
    and the jobs expanded into a job graph for each run.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str = Field(..., description="Template name (e.g. 'rust-ci')")
    description: Optional[str] = Field(None, description="Human-readable description")
    inputs: Tuple[InputSpec, ...] = Field((), description="Ordered input schema")
    secrets: Tuple[SecretSpec, ...] = Field((), description="Secret references required")
    jobs: Tuple[JobSpec, ...] = Field(..., description="Ordered job definitions")

    @field_validator("jobs")
    @classmethod
    def validate_jobs(cls, jobs: Tuple[JobSpec, ...]):
        """Validate job list has at least one job and unique IDs."""
        if not jobs:
            raise ValueError("Template must have at least one job")

        job_ids = [job.id for job in jobs]
        if len(job_ids) != len(set(job_ids)):
            dupes = sorted({j for j in job_ids if job_ids.count(j) > 1})
            raise ValueError(f"Job IDs must be unique, duplicates: {dupes}")

        return jobs

    @field_validator("inputs")
    @classmethod
    def validate_inputs(cls, inputs: Tuple[InputSpec, ...]):
        names = [spec.name for spec in inputs]
        if len(names) != len(set(names)):
            dupes = sorted({n for n in names if names.count(n) > 1})
            raise ValueError(f"Input names must be unique, duplicates: {dupes}")
        return inputs

    @field_validator("secrets")
    @classmethod
    def validate_secrets(cls, secrets: Tuple[SecretSpec, ...]):
        names = [secret.name for secret in secrets]
        if len(names) != len(set(names)):
            raise ValueError("Secret names must be unique")
        return secrets

    @model_validator(mode="after")
    def validate_job_references(self):
        """Validate job references (depends_on, secrets) exist."""
        job_ids = {job.id for job in self.jobs}
        secret_names = self.secrets_required

        for job in self.jobs:
            for dep_id in job.depends_on:
                if dep_id not in job_ids:
                    raise ValueError(f"Job '{job.id}' depends on unknown job '{dep_id}'")

            for secret in job.secrets:
                if secret not in secret_names:
                    raise ValueError(f"Job '{job.id}' uses undeclared secret '{secret}'")

        return self

    @property
    def secrets_required(self) -> FrozenSet[str]:
        return frozenset(secret.name for secret in self.secrets)

    @property
    def input_names(self) -> Tuple[str, ...]:
        return tuple(spec.name for spec in self.inputs)

    def get_input(self, name: str) -> Optional[InputSpec]:
        return next((spec for spec in self.inputs if spec.name == name), None)

    def get_job(self, job_id: str) -> Optional[JobSpec]:
        return next((job for job in self.jobs if job.id == job_id), None)

    def describe(self) -> Dict[str, Any]:
        """Serializable summary of the template's interface."""
        return {
            "name": self.name,
            "description": self.description,
            "inputs": [
                spec.model_dump(mode="json", exclude_none=True)
                for spec in self.inputs
            ],
            "secrets": [
                secret.model_dump(mode="json", exclude_none=True)
                for secret in self.secrets
            ],
            "jobs": [
                {
                    "id": job.id,
                    "depends_on": list(job.depends_on),
                    "condition": job.condition,
                    "gates": [gate.describe() for gate in job.gates],
                }
                for job in self.jobs
            ],
        }
