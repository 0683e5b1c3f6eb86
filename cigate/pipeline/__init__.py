"""Workflow pipeline for cigate.

This package provides:
- Template schema definitions (schema.py)
- Template loader and catalog (loader.py)
- Condition expressions (conditions.py)
- Input resolution (resolver.py)
- Job graph construction (graph.py)
- Wavefront dispatch (dispatcher.py, imported directly: it depends on cigate.backends)
- Gate evaluation (gating.py)
"""

from cigate.pipeline.schema import (
    GateComparator,
    GateSpec,
    InputKind,
    InputSpec,
    JobSpec,
    SecretSpec,
    Template,
)
from cigate.pipeline.loader import (
    TemplateCatalog,
    TemplateLoader,
)
from cigate.pipeline.resolver import (
    InputResolver,
    ResolvedConfig,
)
from cigate.pipeline.graph import (
    JobGraph,
    JobGraphBuilder,
    PlannedJob,
)
from cigate.pipeline.gating import GateEvaluator

__all__ = [
    "GateComparator",
    "GateSpec",
    "InputKind",
    "InputSpec",
    "JobSpec",
    "SecretSpec",
    "Template",
    "TemplateCatalog",
    "TemplateLoader",
    "InputResolver",
    "ResolvedConfig",
    "JobGraph",
    "JobGraphBuilder",
    "PlannedJob",
    "GateEvaluator",
]
