from __future__ import annotations

from pathlib import Path

import pytest

from warpos import get_version
from warpos.canonical import content_fingerprint, sha256_text, to_canonical_json
from warpos.errors import NotFoundError
from warpos.intents import IntentStore
from warpos.settings import RuntimeSettings


def test_canonical_json() -> None:
    left = {"b": 2, "a": 1, "nested": {"z": 9, "y": [3, 2, 1]}}
    right = {"nested": {"y": [3, 2, 1], "z": 9}, "a": 1, "b": 2}
    assert to_canonical_json(left) == to_canonical_json(right)
    assert content_fingerprint(left) == content_fingerprint(right)
    assert sha256_text("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_runtime_settings_defaults(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    for name in ("WARPOS_ROOT", "WARPOS_EXECUTION_MODE", "WARPOS_VERIFY_TIMEOUT", "ZAI_BASE_URL", "ZAI_MODEL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)

    settings = RuntimeSettings.from_env()

    assert settings.execution_mode == "apply"
    assert settings.verification_timeout_seconds == 600
    assert settings.llm_base_url == "https://api.z.ai/v1"
    assert settings.llm_model == "z-ai"
    assert settings.templates_path == tmp_path / "task-templates"
    assert settings.profiles_path == tmp_path / "profiles" / "domains"
    assert settings.plans_path == tmp_path / ".warpos" / "plans"


def test_runtime_settings_from_env_overrides(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("WARPOS_ROOT", str(tmp_path))
    monkeypatch.setenv("WARPOS_TEMPLATES_DIR", str(tmp_path / "elsewhere"))
    monkeypatch.setenv("WARPOS_EXECUTION_MODE", " Record ")
    monkeypatch.setenv("WARPOS_VERIFY_TIMEOUT", "45")
    monkeypatch.setenv("ZAI_BASE_URL", "https://example.test/v1/")

    settings = RuntimeSettings.from_env()

    assert settings.execution_mode == "record"
    assert settings.verification_timeout_seconds == 45
    assert settings.llm_base_url == "https://example.test/v1"
    assert settings.templates_path == tmp_path / "elsewhere"
    assert settings.instances_path == tmp_path / "task-instances"


@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("WARPOS_EXECUTION_MODE", "yolo", "WARPOS_EXECUTION_MODE"),
        ("WARPOS_VERIFY_TIMEOUT", "soon", "must be an integer"),
        ("WARPOS_VERIFY_TIMEOUT", "0", "must be >= 1"),
        ("WARPOS_PLANS_DIR", "  ", "WARPOS_PLANS_DIR must be non-empty"),
        ("ZAI_MODEL", " ", "ZAI_MODEL must be non-empty"),
    ],
)
def test_runtime_settings_invalid_env_raises(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str, message: str
) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ValueError, match=message):
        RuntimeSettings.from_env()


def test_intent_store_put_get_and_hash(tmp_path: Path) -> None:
    store = IntentStore(tmp_path / "intents")

    assert store.list_project_slugs() == []
    assert store.current_hash("demo") is None
    with pytest.raises(NotFoundError, match="Intent document for project 'demo' not found"):
        store.get("demo")

    meta = store.put("demo", "# Demo\n")
    document = store.get("demo")

    assert meta.sha256 == sha256_text("# Demo\n")
    assert document.markdown == "# Demo\n"
    assert document.meta == meta
    assert store.list_project_slugs() == ["demo"]


def test_get_version_returns_string() -> None:
    assert isinstance(get_version(), str)
