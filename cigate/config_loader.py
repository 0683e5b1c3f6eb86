"""YAML catalog sources with ${ENV_VAR} expansion."""
import logging
import os
import re
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from cigate.errors import MalformedTemplate

logger = logging.getLogger(__name__)


class ConfigLoader:
    """
    Read YAML sources and expand environment references in string values.

    ``${NAME}`` and ``${NAME:-fallback}`` are expanded. Names are upper-case,
    so ``${{ inputs.x }}`` placeholders pass through for the graph builder.
    """

    ENV_REF = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ

    def expand(self, value: Any, where: str = "<source>") -> Any:
        if isinstance(value, str):
            return self.ENV_REF.sub(lambda match: self._lookup(match, where), value)
        if isinstance(value, dict):
            return {key: self.expand(item, where) for key, item in value.items()}
        if isinstance(value, list):
            return [self.expand(item, where) for item in value]
        return value

    def _lookup(self, match, where: str) -> str:
        name, fallback = match.group(1), match.group(2)
        if name in self.environ:
            return self.environ[name]
        if fallback is not None:
            logger.debug(f"{where}: ${{{name}}} unset, using fallback")
            return fallback
        raise MalformedTemplate(f"{where} references environment variable '{name}', which is not set")

    def load_yaml(self, path: Path) -> Any:
        """
        Parse a YAML file and expand environment references.

        An empty file yields an empty mapping. yaml.YAMLError propagates.
        """
        if not path.exists():
            raise FileNotFoundError(f"Catalog file not found: {path}")

        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f)

        return self.expand(raw if raw is not None else {}, where=str(path))
