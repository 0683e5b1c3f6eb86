"""Template loader and catalog.

Loads template definitions from YAML (a single file or a directory of
files), validates them, and exposes them through a read-only catalog.

Source format: a mapping from template name to ``{inputs, secrets, jobs}``::

    rust-ci:
      inputs:
        - name: run-coverage
          kind: boolean
          default: false
      jobs:
        - id: test
          command: cargo test --all-features
"""

import logging
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import ValidationError as PydanticValidationError

from cigate.config_loader import ConfigLoader
from cigate.errors import (
    MalformedTemplate,
    UndefinedConditionVariable,
    UndefinedPlaceholder,
    UnknownTemplate,
)
from cigate.pipeline import conditions
from cigate.pipeline.graph import PLACEHOLDER_RE, placeholder_name, topo_levels
from cigate.pipeline.schema import InputKind, Template

logger = logging.getLogger(__name__)


class TemplateLoader:
    """Load and validate template definitions."""

    def __init__(self, source_loader: Optional[ConfigLoader] = None):
        self.source_loader = source_loader or ConfigLoader()

    def load_from_yaml(self, path: Union[str, Path]) -> Dict[str, Template]:
        """
        Load templates from a YAML file or a directory of YAML files.

        Args:
            path: File or directory path

        Returns:
            Mapping of template name -> Template

        Raises:
            FileNotFoundError: If the path doesn't exist
            MalformedTemplate: If the YAML or a template is invalid
            CycleError, UndefinedConditionVariable, UndefinedPlaceholder: On authoring bugs
        """
        path = Path(path)
        if path.is_dir():
            files = sorted(list(path.glob("*.yaml")) + list(path.glob("*.yml")))
        else:
            files = [path]

        templates: Dict[str, Template] = {}
        for file_path in files:
            try:
                source = self.source_loader.load_yaml(file_path)
            except yaml.YAMLError as e:
                raise MalformedTemplate(f"Invalid YAML in {file_path}: {e}")

            for name, template in self.load_from_dict(source, origin=str(file_path)).items():
                if name in templates:
                    raise MalformedTemplate(
                        f"Template '{name}' is defined more than once (again in {file_path})",
                        template=name,
                    )
                templates[name] = template

        logger.info(f"Loaded {len(templates)} template(s) from {path}")
        return templates

    def load_from_dict(self, source: Mapping[str, Any], origin: str = "<dict>") -> Dict[str, Template]:
        """
        Load templates from an in-memory mapping.

        Args:
            source: Mapping of template name -> template body
            origin: Where the source came from, for error messages

        Returns:
            Mapping of template name -> Template
        """
        if not isinstance(source, Mapping):
            raise MalformedTemplate(f"Template source {origin} must be a mapping of name -> template")

        templates = {}
        for name, body in source.items():
            templates[name] = self.build_template(str(name), body, origin=origin)
        return templates

    def build_template(self, name: str, body: Any, origin: str = "<dict>") -> Template:
        """Validate one template body and run the cross-reference checks."""
        if not isinstance(body, Mapping):
            raise MalformedTemplate(f"Template '{name}' in {origin} must be a mapping", template=name)
        if "name" in body and body["name"] != name:
            raise MalformedTemplate(
                f"Template key '{name}' does not match its name field '{body['name']}'",
                template=name,
            )

        try:
            template = Template(**{**body, "name": name})
        except PydanticValidationError as e:
            raise MalformedTemplate(f"Invalid template '{name}' in {origin}: {e}", template=name)

        self.validate_template(template)
        return template

    def validate_template(self, template: Template) -> None:
        """
        Check what pydantic cannot: dependency cycles, condition variables,
        command placeholders and gate threshold inputs.

        Raises:
            CycleError: If jobs depend on each other in a cycle
            UndefinedConditionVariable: If a condition references an undeclared input
            UndefinedPlaceholder: If a command references an undeclared input or a secret
            MalformedTemplate: If a gate threshold input is not a number input
        """
        input_names = set(template.input_names)

        job_ids = [job.id for job in template.jobs]
        topo_levels(job_ids, {job.id: job.depends_on for job in template.jobs}, template.name)

        for secret in template.secrets:
            if secret.when is not None:
                self._check_condition(template, secret.when, input_names, job_id=None)

        for job in template.jobs:
            if job.condition is not None:
                self._check_condition(template, job.condition, input_names, job_id=job.id)

            for match in PLACEHOLDER_RE.finditer(job.command):
                expression = match.group(1)
                if expression.startswith("secrets."):
                    raise UndefinedPlaceholder(
                        f"Job '{job.id}' embeds secret placeholder '{expression}' in its command; "
                        f"list the secret under the job's 'secrets' instead",
                        template=template.name,
                        job_id=job.id,
                    )
                name = placeholder_name(expression)
                if name not in input_names:
                    raise UndefinedPlaceholder(
                        f"Command of job '{job.id}' references undefined input '{expression}'",
                        template=template.name,
                        job_id=job.id,
                        input_name=name,
                    )

            for gate in job.gates:
                if gate.threshold_input is None:
                    continue
                spec = template.get_input(gate.threshold_input)
                if spec is None or spec.kind != InputKind.NUMBER:
                    raise MalformedTemplate(
                        f"Gate '{gate.metric}' on job '{job.id}' must take its threshold from a "
                        f"number input, got '{gate.threshold_input}'",
                        template=template.name,
                        job_id=job.id,
                        input_name=gate.threshold_input,
                    )

    def _check_condition(self, template: Template, expression: str, input_names, job_id: Optional[str]):
        undefined = sorted(conditions.referenced_names(expression) - input_names)
        if undefined:
            raise UndefinedConditionVariable(
                f"Condition {expression!r} references undefined input '{undefined[0]}'",
                template=template.name,
                job_id=job_id,
                input_name=undefined[0],
            )

    def lint(self, template: Template) -> List[str]:
        """
        Return warnings about a valid but suspicious template.

        Args:
            template: Template to inspect

        Returns:
            List of warning messages (empty if no issues)
        """
        warnings = []

        referenced = set()
        for job in template.jobs:
            if job.condition:
                referenced |= conditions.referenced_names(job.condition)
            referenced |= {placeholder_name(m.group(1)) for m in PLACEHOLDER_RE.finditer(job.command)}
            referenced |= {gate.threshold_input for gate in job.gates if gate.threshold_input}
        for secret in template.secrets:
            if secret.when:
                referenced |= conditions.referenced_names(secret.when)

        for name in template.input_names:
            if name not in referenced:
                warnings.append(f"Input '{name}' is never referenced by a job")

        used_secrets = {secret for job in template.jobs for secret in job.secrets}
        for secret in template.secrets:
            if secret.name not in used_secrets:
                warnings.append(f"Secret '{secret.name}' is required but no job forwards it")

        return warnings


class TemplateCatalog:
    """Read-only registry of templates, loaded once at startup.

    Lookups need no locking: neither the mapping nor the templates change
    after construction.
    """

    def __init__(self, templates: Mapping[str, Template]):
        self._templates = MappingProxyType(dict(templates))

    @classmethod
    def from_yaml(cls, path: Union[str, Path], loader: Optional[TemplateLoader] = None) -> "TemplateCatalog":
        return cls((loader or TemplateLoader()).load_from_yaml(path))

    @classmethod
    def from_dict(cls, source: Mapping[str, Any], loader: Optional[TemplateLoader] = None) -> "TemplateCatalog":
        return cls((loader or TemplateLoader()).load_from_dict(source))

    def get(self, name: str) -> Template:
        """
        Get template by name.

        Raises:
            UnknownTemplate: If no template has this name
        """
        template = self._templates.get(name)
        if template is None:
            raise UnknownTemplate(name, self._templates.keys())
        return template

    def names(self) -> List[str]:
        return sorted(self._templates)

    def describe(self, name: str) -> Dict[str, Any]:
        return self.get(name).describe()

    def __contains__(self, name: object) -> bool:
        return name in self._templates

    def __len__(self) -> int:
        return len(self._templates)
