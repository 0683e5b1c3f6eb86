"""Input resolution: validate a caller's configuration against a template."""

import logging
from collections import abc
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, Iterator, Mapping, Optional, Tuple

from cigate.errors import MissingRequiredInput, MissingSecret, UnknownInput
from cigate.pipeline import conditions
from cigate.pipeline.schema import Scalar, Template

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedConfig(abc.Mapping):
    """Immutable mapping of input name -> typed value for one run.

    Values are kept in the template's declared input order; absent optional
    inputs are not present. Secret references are names only.
    """
    template: str
    items_: Tuple[Tuple[str, Scalar], ...]
    secret_refs: FrozenSet[str] = frozenset()

    def __getitem__(self, key: str) -> Scalar:
        for name, value in self.items_:
            if name == key:
                return value
        raise KeyError(key)

    def __iter__(self) -> Iterator[str]:
        return (name for name, _ in self.items_)

    def __len__(self) -> int:
        return len(self.items_)

    def as_dict(self) -> Dict[str, Scalar]:
        return dict(self.items_)


class InputResolver:
    """Resolve raw caller inputs against a template's input schema."""

    def resolve(
        self,
        template: Template,
        raw_config: Optional[Mapping[str, Any]] = None,
        secret_refs: Optional[Iterable[str]] = None,
    ) -> ResolvedConfig:
        """
        Resolve a caller configuration.

        Args:
            template: Template whose schema applies
            raw_config: Caller-supplied input values (strings, booleans, numbers)
            secret_refs: Names of secrets the caller can provide

        Returns:
            ResolvedConfig

        Raises:
            TypeMismatch, InvalidEnumValue, PatternMismatch: On bad values
            MissingRequiredInput: If a required input is not supplied
            UnknownInput: If the config holds keys the template does not declare
            MissingSecret: If a required secret reference is missing
        """
        raw_config = dict(raw_config or {})
        refs = frozenset(secret_refs or ())

        resolved = []
        for spec in template.inputs:
            if spec.name in raw_config:
                value = spec.coerce(raw_config[spec.name], template=template.name)
            elif spec.default is not None:
                value = spec.coerce(spec.default, template=template.name)
            elif spec.required:
                raise MissingRequiredInput(
                    f"Template '{template.name}' requires input '{spec.name}'",
                    template=template.name,
                    input_name=spec.name,
                )
            else:
                continue
            resolved.append((spec.name, value))

        unknown = set(raw_config) - set(template.input_names)
        if unknown:
            raise UnknownInput(template.name, unknown)

        values = dict(resolved)
        missing = sorted(
            secret.name
            for secret in template.secrets
            if secret.name not in refs and self._secret_needed(template, secret.when, values)
        )
        if missing:
            raise MissingSecret(template.name, missing)

        logger.debug(
            f"Resolved {len(resolved)} input(s) for template '{template.name}' "
            f"with {len(refs)} secret reference(s)"
        )
        return ResolvedConfig(
            template=template.name,
            items_=tuple(resolved),
            secret_refs=refs,
        )

    def _secret_needed(self, template: Template, when: Optional[str], values: Dict[str, Scalar]) -> bool:
        if when is None:
            return True
        return conditions.evaluate(when, values, known=template.input_names, template=template.name)
