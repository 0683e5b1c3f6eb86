#!/usr/bin/env python3
"""Test template schema validation and input coercion."""

import pytest
from pydantic import ValidationError

from cigate.errors import InvalidEnumValue, PatternMismatch, TypeMismatch
from cigate.pipeline.schema import (
    GateComparator,
    GateSpec,
    InputKind,
    InputSpec,
    JobSpec,
    SecretSpec,
    Template,
)


def test_valid_simple_template():
    """Test creating a valid simple template."""
    template = Template(
        name="simple",
        inputs=[{"name": "run-lint", "kind": "boolean", "default": True}],
        jobs=[
            {"id": "lint", "command": "make lint", "condition": "run-lint"},
            {"id": "test", "command": "make test", "depends_on": ["lint"]},
        ],
    )
    assert template.name == "simple"
    assert len(template.jobs) == 2
    assert template.input_names == ("run-lint",)
    assert template.get_job("test").depends_on == ("lint",)
    assert template.get_job("missing") is None


def test_template_requires_jobs():
    with pytest.raises(ValidationError):
        Template(name="empty", jobs=[])


def test_template_duplicate_job_ids():
    """Test template with duplicate job IDs fails validation."""
    with pytest.raises(ValidationError, match="duplicates"):
        Template(
            name="dupes",
            jobs=[
                {"id": "build", "command": "a"},
                {"id": "build", "command": "b"},
            ],
        )


def test_template_unknown_dependency():
    with pytest.raises(ValidationError, match="depends on unknown job"):
        Template(name="t", jobs=[{"id": "test", "command": "x", "depends_on": ["build"]}])


def test_template_undeclared_job_secret():
    with pytest.raises(ValidationError, match="undeclared secret"):
        Template(name="t", jobs=[{"id": "publish", "command": "x", "secrets": ["TOKEN"]}])


def test_template_rejects_unknown_fields():
    with pytest.raises(ValidationError):
        Template(name="t", jobs=[{"id": "a", "command": "x", "runs-on": "ubuntu"}])


def test_secret_shorthand():
    template = Template(
        name="t",
        secrets=["TOKEN", {"name": "OTHER", "when": "publish"}],
        inputs=[{"name": "publish", "kind": "boolean", "default": False}],
        jobs=[{"id": "a", "command": "x", "secrets": ["TOKEN"]}],
    )
    assert template.secrets_required == frozenset({"TOKEN", "OTHER"})
    assert template.secrets[1] == SecretSpec(name="OTHER", when="publish")


def test_template_is_frozen():
    template = Template(name="t", jobs=[{"id": "a", "command": "x"}])
    with pytest.raises(ValidationError):
        template.name = "other"


def test_job_cannot_depend_on_itself():
    with pytest.raises(ValidationError):
        JobSpec(id="loop", command="x", depends_on=["loop"])


def test_job_condition_syntax_checked():
    with pytest.raises(ValidationError):
        JobSpec(id="a", command="x", condition="run-tests ==")


def test_job_id_format():
    with pytest.raises(ValidationError):
        JobSpec(id="bad id", command="x")


def test_required_input_cannot_have_default():
    with pytest.raises(ValidationError):
        InputSpec(name="language", kind="enum", allowed=["rust"], required=True, default="rust")


def test_enum_input_needs_allowed_values():
    with pytest.raises(ValidationError):
        InputSpec(name="language", kind="enum")


def test_enum_default_must_be_allowed():
    with pytest.raises(ValidationError, match="invalid default"):
        InputSpec(name="language", kind="enum", allowed=["rust", "python"], default="go")


def test_allowed_only_for_enum():
    with pytest.raises(ValidationError):
        InputSpec(name="flag", kind="boolean", allowed=["true"])


def test_pattern_only_for_strings():
    with pytest.raises(ValidationError):
        InputSpec(name="count", kind="number", pattern="[0-9]+")


def test_pattern_must_compile():
    with pytest.raises(ValidationError):
        InputSpec(name="tag", pattern="[unclosed")


def test_gate_needs_exactly_one_threshold_source():
    with pytest.raises(ValidationError):
        GateSpec(metric="coverage-percent", comparator=">=")
    with pytest.raises(ValidationError):
        GateSpec(metric="coverage-percent", comparator=">=", threshold=80, threshold_input="coverage-threshold")

    gate = GateSpec(metric="coverage-percent", comparator=">=", threshold_input="coverage-threshold")
    assert gate.describe() == "coverage-percent >= ${{ inputs.coverage-threshold }}"


def test_gate_comparators():
    assert GateComparator.GTE.compare(80, 80)
    assert not GateComparator.GTE.compare(75, 80)
    assert GateComparator.LTE.compare(0, 0)
    assert not GateComparator.LTE.compare(2, 0)
    assert GateComparator.EQ.compare(0.0, 0)


def test_coerce_boolean():
    spec = InputSpec(name="flag", kind=InputKind.BOOLEAN)
    assert spec.coerce(True) is True
    assert spec.coerce("yes") is True
    assert spec.coerce("TRUE") is True
    assert spec.coerce("0") is False
    assert spec.coerce("no") is False
    with pytest.raises(TypeMismatch):
        spec.coerce("maybe")
    with pytest.raises(TypeMismatch):
        spec.coerce(1)


def test_coerce_number():
    spec = InputSpec(name="threshold", kind=InputKind.NUMBER)
    assert spec.coerce("42") == 42
    assert isinstance(spec.coerce("42"), int)
    assert spec.coerce("2.5") == 2.5
    assert spec.coerce(7) == 7
    with pytest.raises(TypeMismatch):
        spec.coerce(True)
    with pytest.raises(TypeMismatch):
        spec.coerce("eighty")
    with pytest.raises(TypeMismatch):
        spec.coerce("nan")


def test_coerce_enum():
    spec = InputSpec(name="language", kind=InputKind.ENUM, allowed=["rust", "python", "node"])
    assert spec.coerce("rust") == "rust"
    with pytest.raises(InvalidEnumValue) as exc_info:
        spec.coerce("go", template="release")
    assert exc_info.value.template == "release"
    assert exc_info.value.input_name == "language"
    with pytest.raises(TypeMismatch):
        spec.coerce(1)


def test_coerce_string():
    spec = InputSpec(name="version", pattern=r"v?[0-9]+\.[0-9]+\.[0-9]+")
    assert spec.coerce("1.2.3") == "1.2.3"
    with pytest.raises(PatternMismatch):
        spec.coerce("latest")
    with pytest.raises(TypeMismatch):
        spec.coerce(False)

    plain = InputSpec(name="python-version")
    assert plain.coerce(3.12) == "3.12"


def test_describe_is_serializable():
    template = Template(
        name="t",
        description="demo",
        inputs=[{"name": "language", "kind": "enum", "allowed": ["rust"], "required": True}],
        jobs=[{"id": "a", "command": "x", "condition": "language == 'rust'"}],
    )
    described = template.describe()
    assert described["name"] == "t"
    assert described["inputs"][0] == {
        "name": "language",
        "kind": "enum",
        "required": True,
        "allowed": ["rust"],
    }
    assert described["jobs"][0]["condition"] == "language == 'rust'"


if __name__ == "__main__":
    print("[TEST] Valid simple template...")
    test_valid_simple_template()
    print("  [OK] Template created successfully")

    print("[TEST] Duplicate job IDs...")
    test_template_duplicate_job_ids()
    print("  [OK] Correctly rejected duplicate job IDs")

    print("[TEST] Input coercion...")
    test_coerce_boolean()
    test_coerce_number()
    test_coerce_enum()
    test_coerce_string()
    print("  [OK] Inputs coerce as declared")

    print("\n[OK] All tests passed!")
