from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from warpos.errors import NotFoundError, ValidationError
from warpos.instances import InstanceGenerator
from warpos.models import InstanceStatus
from warpos.templates import TemplateLibrary

INTENT_HASH = "a" * 64


def _template(version: int = 1, **overrides: Any) -> dict[str, Any]:
    document: dict[str, Any] = {
        "id": "add-endpoint",
        "version": version,
        "description": "Add an HTTP endpoint",
        "inputs_schema": {
            "type": "object",
            "required": ["endpoint_path", "method"],
            "properties": {
                "endpoint_path": {"type": "string"},
                "method": {"type": "string", "enum": ["GET", "POST"]},
                "auth": {"type": "boolean"},
            },
            "additionalProperties": False,
        },
        "outputs_schema": {"type": "object"},
        "steps": [{"id": "route", "instruction": "Add {method} {endpoint_path}"}],
    }
    document.update(overrides)
    return document


@pytest.fixture()
def generator(tmp_path: Path) -> InstanceGenerator:
    templates = TemplateLibrary(tmp_path / "task-templates")
    templates.put(_template())
    return InstanceGenerator(tmp_path / "task-instances", templates)


def test_generate_persists_locked_instance(generator: InstanceGenerator) -> None:
    instance = generator.generate(
        "demo",
        "add-endpoint",
        1,
        {"endpoint_path": "/api/todos", "method": "GET"},
        INTENT_HASH,
        ["example/developer"],
    )

    assert instance.status == InstanceStatus.PENDING
    assert instance.template_version == 1
    assert instance.domain_profiles == ["example/developer"]
    assert instance.template_fingerprint == generator.templates.load("add-endpoint", 1).content_fingerprint()

    path = generator.root / "demo" / f"{instance.instance_id}.json"
    stored = json.loads(path.read_text(encoding="utf-8"))
    assert stored["inputs"] == {"endpoint_path": "/api/todos", "method": "GET"}
    assert stored["intent_hash"] == INTENT_HASH

    assert generator.get("demo", instance.instance_id) == instance
    assert generator.list_ids("demo") == [instance.instance_id]


def test_generate_ids_are_unique(generator: InstanceGenerator) -> None:
    inputs = {"endpoint_path": "/a", "method": "POST"}
    first = generator.generate("demo", "add-endpoint", 1, inputs, INTENT_HASH, [])
    second = generator.generate("demo", "add-endpoint", 1, inputs, INTENT_HASH, [])

    assert first.instance_id != second.instance_id
    assert sorted(generator.list_ids("demo")) == sorted([first.instance_id, second.instance_id])


def test_generate_reports_all_input_violations_and_writes_nothing(generator: InstanceGenerator) -> None:
    with pytest.raises(ValidationError) as excinfo:
        generator.generate("demo", "add-endpoint", 1, {"method": "DELETE", "extra": 1}, INTENT_HASH, [])

    message = str(excinfo.value)
    assert message.startswith("Input validation failed for template add-endpoint@1")
    assert len(excinfo.value.errors) == 3
    assert "'endpoint_path' is a required property" in message
    assert generator.list_ids("demo") == []


def test_generate_unknown_template_or_version(generator: InstanceGenerator) -> None:
    with pytest.raises(NotFoundError, match="Task template not found: add-endpoint@7"):
        generator.generate("demo", "add-endpoint", 7, {}, INTENT_HASH, [])
    with pytest.raises(NotFoundError):
        generator.generate("demo", "missing", 1, {}, INTENT_HASH, [])


def test_generate_rejects_bad_arguments(generator: InstanceGenerator) -> None:
    with pytest.raises(ValidationError) as excinfo:
        generator.generate("demo", "add-endpoint", 0, [], "", [])

    assert len(excinfo.value.errors) == 3

    with pytest.raises(ValidationError):
        generator.generate("../demo", "add-endpoint", 1, {}, INTENT_HASH, [])
    with pytest.raises(ValidationError):
        generator.generate("demo", "add-endpoint", 1, {}, INTENT_HASH, ["../etc"])
    with pytest.raises(ValidationError):
        generator.generate("demo\n", "add-endpoint", 1, {"endpoint_path": "/x", "method": "GET"}, INTENT_HASH, [])
    with pytest.raises(ValidationError):
        generator.get("demo", "abc\n")
    assert not (generator.root / "demo\n").exists()


def test_empty_profiles_fall_back_to_template_default(tmp_path: Path) -> None:
    templates = TemplateLibrary(tmp_path / "task-templates")
    templates.put(_template(2, domain_profiles_default=["base/web"]))
    generator = InstanceGenerator(tmp_path / "task-instances", templates)

    defaulted = generator.generate("demo", "add-endpoint", 2, {"endpoint_path": "/x", "method": "GET"}, INTENT_HASH, [])
    explicit = generator.generate(
        "demo", "add-endpoint", 2, {"endpoint_path": "/x", "method": "GET"}, INTENT_HASH, ["other"]
    )

    assert defaulted.domain_profiles == ["base/web"]
    assert explicit.domain_profiles == ["other"]


def test_generate_from_deprecated_template_warns(generator: InstanceGenerator, caplog: pytest.LogCaptureFixture) -> None:
    generator.templates.deprecate("add-endpoint", 1)

    with caplog.at_level("WARNING", logger="warpos.instances"):
        instance = generator.generate("demo", "add-endpoint", 1, {"endpoint_path": "/x", "method": "GET"}, INTENT_HASH, [])

    assert instance.template_version == 1
    assert "deprecated template add-endpoint@1" in caplog.text


def test_get_missing_instance(generator: InstanceGenerator) -> None:
    with pytest.raises(NotFoundError, match="Task instance 'nope' not found in project 'demo'"):
        generator.get("demo", "nope")
    with pytest.raises(ValidationError):
        generator.get("demo", "../../etc/passwd")


def test_list_ids_for_unknown_project_is_empty(generator: InstanceGenerator) -> None:
    assert generator.list_ids("never-used") == []


def test_record_status_only_changes_status(generator: InstanceGenerator) -> None:
    instance = generator.generate("demo", "add-endpoint", 1, {"endpoint_path": "/x", "method": "GET"}, INTENT_HASH, [])

    updated = generator.record_status("demo", instance.instance_id, InstanceStatus.EXECUTED)

    assert updated.status == InstanceStatus.EXECUTED
    assert updated.model_dump(exclude={"status"}) == instance.model_dump(exclude={"status"})
    assert generator.get("demo", instance.instance_id).status == InstanceStatus.EXECUTED

    with pytest.raises(NotFoundError):
        generator.record_status("demo", "missing", InstanceStatus.FAILED)
