"""Error taxonomy for cigate.

Four families, each mapped to a distinct outcome at the CLI/API boundary:

- ValidationError: bad caller input, reported before any job runs (exit 2)
- CatalogError: authoring bug in the template source (exit 3)
- ExecutionError: a job-level problem recorded in the verdict
- BackendError: the execution backend itself misbehaved (retried)
"""

from typing import Iterable, Optional


EXIT_PASS = 0
EXIT_FAILURE = 1
EXIT_VALIDATION = 2
EXIT_CATALOG = 3


class CigateError(Exception):
    """Base class carrying the context needed to act on an error."""

    exit_code = EXIT_FAILURE

    def __init__(
        self,
        message: str,
        template: Optional[str] = None,
        job_id: Optional[str] = None,
        input_name: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.template = template
        self.job_id = job_id
        self.input_name = input_name

    def to_dict(self):
        data = {"error": type(self).__name__, "message": self.message}
        if self.template:
            data["template"] = self.template
        if self.job_id:
            data["job_id"] = self.job_id
        if self.input_name:
            data["input"] = self.input_name
        return data


# ---------------------------------------------------------------------------
# Validation errors (caller input)
# ---------------------------------------------------------------------------

class ValidationError(CigateError):
    exit_code = EXIT_VALIDATION


class UnknownTemplate(ValidationError):
    def __init__(self, name: str, known: Iterable[str] = ()):
        known = sorted(known)
        super().__init__(
            f"Unknown template '{name}'. Known templates: {known}",
            template=name,
        )


class TypeMismatch(ValidationError):
    pass


class InvalidEnumValue(ValidationError):
    pass


class PatternMismatch(ValidationError):
    pass


class MissingRequiredInput(ValidationError):
    pass


class UnknownInput(ValidationError):
    def __init__(self, template: str, names: Iterable[str]):
        self.names = sorted(names)
        super().__init__(
            f"Template '{template}' does not declare input(s): {', '.join(self.names)}",
            template=template,
            input_name=self.names[0] if self.names else None,
        )


class MissingSecret(ValidationError):
    def __init__(self, template: str, names: Iterable[str]):
        self.names = sorted(names)
        super().__init__(
            f"Template '{template}' requires secret reference(s): {', '.join(self.names)}",
            template=template,
        )


# ---------------------------------------------------------------------------
# Catalog errors (template authoring bugs)
# ---------------------------------------------------------------------------

class CatalogError(CigateError):
    exit_code = EXIT_CATALOG


class MalformedTemplate(CatalogError):
    pass


class CycleError(CatalogError):
    def __init__(self, template: str, stuck: Iterable[str]):
        self.stuck = sorted(stuck)
        super().__init__(
            f"Template '{template}' has a dependency cycle. Stuck jobs: {self.stuck}",
            template=template,
            job_id=self.stuck[0] if self.stuck else None,
        )


class ConditionSyntaxError(CatalogError):
    pass


class UndefinedConditionVariable(CatalogError):
    pass


class UndefinedPlaceholder(CatalogError):
    pass


# ---------------------------------------------------------------------------
# Execution / backend errors
# ---------------------------------------------------------------------------

class ExecutionError(CigateError):
    pass


class MissingMetric(ExecutionError):
    def __init__(self, job_id: str, metric: str):
        self.metric = metric
        super().__init__(
            f"job '{job_id}' reported success without metric '{metric}'",
            job_id=job_id,
        )


class BackendError(CigateError):
    """The execution backend failed independently of the job's own logic."""

    def __init__(self, message: str, job_id: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message, job_id=job_id)
        self.retry_after = retry_after
