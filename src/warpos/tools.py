"""Named operations exposed to agents and the CLI.

Every tool returns JSON text. Stores are built per call from
``RuntimeSettings.from_env()`` so tools always see the configured root.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Mapping

from langchain_core.tools import BaseTool, tool

from .errors import NotFoundError
from .identifiers import ensure_profile_id, ensure_project_slug
from .llm import plan_prompt, run_with_framework
from .services import Services, build_services
from .settings import RuntimeSettings
from .storage import dump_yaml

logger = logging.getLogger(__name__)


def _services() -> Services:
    return build_services(RuntimeSettings.from_env())


def _json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


def _require_text(value: Any, label: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{label} must be a non-empty string")
    return value


def _require_profile_ids(value: Any, label: str, *, allow_empty: bool = False) -> list[str]:
    if value is None and allow_empty:
        return []
    if not isinstance(value, list) or (not value and not allow_empty):
        raise ValueError(f"{label} must be a non-empty array of strings")
    for item in value:
        ensure_profile_id(item)
    return list(value)


def _require_version(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{label} must be a positive integer")
    return value


# ---------------------------------------------------------------------------
# Language model
# ---------------------------------------------------------------------------


@tool("llm_plan")
def llm_plan(prompt: str) -> str:
    """Send one planning prompt to the configured language model and return its text."""
    response = plan_prompt(_require_text(prompt, "prompt"), settings=RuntimeSettings.from_env())
    return _json({"text": response.text})


@tool("domain_agent_run")
def domain_agent_run(
    profiles: list[str],
    input: str,
    model: str | None = None,
    temperature: float | None = None,
) -> str:
    """Run the language model with the compiled framework of the given profiles as system prompt.

    Args:
        profiles: Entry profile ids; inherited profiles are resolved automatically.
        input: The user request.
        model: Optional model override.
        temperature: Optional sampling temperature (default 0.2).

    Returns:
        JSON with the compiled ``framework`` and the model's ``text``.
    """
    profile_ids = _require_profile_ids(profiles, "profiles")
    user_input = _require_text(input, "input")
    services = _services()
    framework = services.profiles.resolve_and_compile(profile_ids)
    response = run_with_framework(
        framework,
        user_input,
        settings=services.settings,
        model_name=model,
        temperature=temperature,
    )
    return _json({"framework": framework, "text": response.text})


# ---------------------------------------------------------------------------
# Domain profiles
# ---------------------------------------------------------------------------


@tool("domain_profile_list")
def domain_profile_list() -> str:
    """List every stored domain profile id."""
    return _json({"profiles": _services().profile_store.list_ids()})


@tool("domain_profile_get")
def domain_profile_get(id: str) -> str:
    """Return the raw YAML text of one domain profile."""
    profile_id = ensure_profile_id(id)
    return _json({"id": profile_id, "yaml": _services().profile_store.get_text(profile_id)})


@tool("domain_profile_put")
def domain_profile_put(id: str, yaml: str) -> str:
    """Create or overwrite a domain profile from YAML text that parses to a mapping."""
    profile_id = ensure_profile_id(id)
    path = _services().profile_store.put(profile_id, _require_text(yaml, "yaml"))
    return _json({"ok": True, "id": profile_id, "file": str(path)})


@tool("domain_profile_delete")
def domain_profile_delete(id: str, reason: str | None = None) -> str:
    """Soft-delete a domain profile by marking it deprecated; it stays resolvable."""
    profile_id = ensure_profile_id(id)
    path = _services().profile_store.deprecate(profile_id, reason)
    return _json({"ok": True, "id": profile_id, "deprecated": True, "file": str(path)})


@tool("domain_profile_compile")
def domain_profile_compile(profiles: list[str]) -> str:
    """Resolve inheritance for the given profiles and return the compiled framework text."""
    profile_ids = _require_profile_ids(profiles, "profiles")
    resolver = _services().profiles
    resolved = resolver.resolve(profile_ids)
    return _json({"profiles": [profile.id for profile in resolved], "framework": resolver.compile(resolved)})


# ---------------------------------------------------------------------------
# Intent documents
# ---------------------------------------------------------------------------


@tool("intent_list")
def intent_list() -> str:
    """List the project slugs that have an intent document."""
    return _json({"projects": _services().intents.list_project_slugs()})


@tool("intent_get")
def intent_get(project_slug: str) -> str:
    """Return a project's intent document and its hash metadata."""
    document = _services().intents.get(ensure_project_slug(project_slug))
    return _json({"meta": document.meta.model_dump(), "markdown": document.markdown})


@tool("intent_put")
def intent_put(project_slug: str, markdown: str) -> str:
    """Create or replace a project's intent document; returns its new hash."""
    if not isinstance(markdown, str):
        raise ValueError("markdown must be a string")
    meta = _services().intents.put(ensure_project_slug(project_slug), markdown)
    return _json({"ok": True, "meta": meta.model_dump()})


# ---------------------------------------------------------------------------
# Task templates
# ---------------------------------------------------------------------------


@tool("task_template_list")
def task_template_list() -> str:
    """List every task template id."""
    return _json({"templates": _services().templates.list_ids()})


@tool("task_template_versions")
def task_template_versions(id: str) -> str:
    """List the stored versions of one template, newest first."""
    template_id = _require_text(id, "id")
    return _json({"id": template_id, "versions": _services().templates.list_versions(template_id)})


@tool("task_template_get")
def task_template_get(id: str, version: int | None = None) -> str:
    """Load one template version (latest when ``version`` is omitted) as JSON plus its YAML text."""
    template_id = _require_text(id, "id")
    if version is not None:
        _require_version(version, "version")
    template = _services().templates.load(template_id, version)
    document = template.to_document()
    return _json({"template": document, "yaml": dump_yaml(document)})


@tool("task_template_put")
def task_template_put(template: dict[str, Any]) -> str:
    """Validate and store a task template; the same id and version is overwritten."""
    if not isinstance(template, Mapping):
        raise ValueError("task_template_put: template must be an object")
    ref = _services().templates.put(template)
    return _json({"ok": True, **ref.model_dump()})


@tool("task_template_delete")
def task_template_delete(id: str, version: int, reason: str | None = None) -> str:
    """Deprecate one template version; it remains loadable by exact version."""
    template_id = _require_text(id, "id")
    ack = _services().templates.deprecate(template_id, _require_version(version, "version"), reason)
    return _json({"ok": True, **ack.model_dump()})


# ---------------------------------------------------------------------------
# Task instances and plans
# ---------------------------------------------------------------------------


@tool("task_instance_list")
def task_instance_list(project_slug: str) -> str:
    """List the instance ids of one project."""
    return _json({"instances": _services().instances.list_ids(ensure_project_slug(project_slug))})


@tool("task_instance_get")
def task_instance_get(project_slug: str, instance_id: str) -> str:
    """Return one task instance."""
    instance = _services().instances.get(ensure_project_slug(project_slug), _require_text(instance_id, "instance_id"))
    return _json({"instance": instance.model_dump(mode="json")})


@tool("task_instance_generate")
def task_instance_generate(
    project_slug: str,
    template_id: str,
    template_version: int,
    inputs: dict[str, Any],
    intent_hash: str,
    domain_profiles: list[str] | None = None,
) -> str:
    """Lock a template version and validated inputs into a new task instance.

    An empty or omitted ``domain_profiles`` falls back to the template's
    ``domain_profiles_default``.
    """
    instance = _services().instances.generate(
        ensure_project_slug(project_slug),
        _require_text(template_id, "template_id"),
        _require_version(template_version, "template_version"),
        inputs,
        _require_text(intent_hash, "intent_hash"),
        _require_profile_ids(domain_profiles, "domain_profiles", allow_empty=True),
    )
    return _json({"ok": True, "instance_id": instance.instance_id, "instance": instance.model_dump(mode="json")})


@tool("task_prepare")
def task_prepare(project_slug: str, instance_id: str) -> str:
    """Render an instance into a new pending execution plan without applying it."""
    plan = _services().executor.prepare(
        ensure_project_slug(project_slug),
        _require_text(instance_id, "instance_id"),
    )
    return _json({"ok": True, "plan_id": plan.plan_id, "plan": plan.to_document()})


@tool("task_execute")
def task_execute(plan_id: str) -> str:
    """Apply a pending plan exactly once and return its per-item results."""
    result = _services().executor.execute(_require_text(plan_id, "plan_id"))
    return _json({"ok": result.ok, "plan": result.plan.to_document(), "results": result.results})


@tool("task_plan_get")
def task_plan_get(plan_id: str) -> str:
    """Return one stored execution plan."""
    plan = _services().executor.get_plan(_require_text(plan_id, "plan_id"))
    return _json({"plan": plan.to_document()})


@tool("task_plan_list")
def task_plan_list(project_slug: str | None = None) -> str:
    """List plan ids, optionally only those of one project."""
    slug = ensure_project_slug(project_slug) if project_slug is not None else None
    return _json({"plans": _services().executor.list_plans(slug)})


ALL_TOOLS: tuple[BaseTool, ...] = (
    llm_plan,
    domain_profile_list,
    domain_profile_get,
    domain_profile_put,
    domain_profile_delete,
    domain_profile_compile,
    domain_agent_run,
    intent_list,
    intent_get,
    intent_put,
    task_template_list,
    task_template_versions,
    task_template_get,
    task_template_put,
    task_template_delete,
    task_instance_list,
    task_instance_get,
    task_instance_generate,
    task_prepare,
    task_execute,
    task_plan_get,
    task_plan_list,
)

TOOLS_BY_NAME: dict[str, BaseTool] = {item.name: item for item in ALL_TOOLS}


def call_tool(name: str, arguments: Mapping[str, Any] | None = None) -> str:
    """Invoke a tool by name with keyword arguments and return its JSON text."""
    selected = TOOLS_BY_NAME.get(name)
    if selected is None:
        raise NotFoundError("Tool", name, f"Unknown tool: {name}")
    logger.debug("Calling tool %s", name)
    return selected.func(**dict(arguments or {}))
