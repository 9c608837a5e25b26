from __future__ import annotations

import logging
import re
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import ValidationError as PydanticValidationError

from .errors import NotFoundError, ValidationError
from .models import DeprecationAck, TaskTemplate, TemplateRef
from .schema import check_schema, ensure_valid
from .storage import atomic_write_text, dump_yaml, load_yaml, locked_file

logger = logging.getLogger(__name__)

TEMPLATE_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._-]*\Z"

# Structural contract for every stored template.
TASK_TEMPLATE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["id", "version", "description", "inputs_schema", "outputs_schema", "steps"],
    "additionalProperties": True,
    "properties": {
        "id": {"type": "string", "minLength": 1, "pattern": TEMPLATE_ID_PATTERN},
        "version": {"type": "integer", "minimum": 1},
        "description": {"type": "string", "minLength": 1},
        "inputs_schema": {"type": "object"},
        "outputs_schema": {"type": "object"},
        "steps": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["id", "instruction"],
                "properties": {
                    "id": {"type": "string"},
                    "instruction": {"type": "string"},
                },
            },
        },
        "verification": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "command"],
                "properties": {
                    "id": {"type": "string"},
                    "command": {"type": "string"},
                },
            },
        },
        "domain_profiles_default": {"type": "array", "items": {"type": "string"}},
        "active": {"type": "boolean"},
        "deprecated": {"type": "boolean"},
        "deprecated_at": {"type": "string"},
        "deprecated_reason": {"type": "string"},
    },
}

_FILENAME_RE = re.compile(r"^(?P<id>.+)@(?P<version>\d+)\.ya?ml$", re.IGNORECASE)


def parse_template_filename(filename: str) -> tuple[str, int] | None:
    """Split ``{id}@{version}.yaml`` into its parts; ``None`` when malformed."""
    match = _FILENAME_RE.match(filename)
    if match is None:
        return None
    version = int(match.group("version"))
    if version < 1:
        return None
    return match.group("id"), version


def _validate_structure(document: Any, label: str) -> TaskTemplate:
    ensure_valid(TASK_TEMPLATE_SCHEMA, document, label)
    try:
        return TaskTemplate.model_validate(document)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(label, exc) from None


class TemplateLibrary:
    """Versioned catalog of task templates stored as ``{id}@{version}.yaml``.

    Publishing the same ``(id, version)`` again overwrites it; a new version
    means a new version number. Deprecation only adds metadata.
    """

    def __init__(self, root: Path) -> None:
        self.root = root

    def template_path(self, template_id: str, version: int) -> Path:
        """Return the file for ``template_id@version``, preferring an existing ``.yml``.

        Raises:
            ValidationError: If ``template_id`` is not a safe file-name id.
        """
        if not isinstance(template_id, str) or not re.match(TEMPLATE_ID_PATTERN, template_id):
            raise ValidationError("Invalid template id", [f"/id must match {TEMPLATE_ID_PATTERN}"])
        for suffix in (".yaml", ".yml"):
            candidate = self.root / f"{template_id}@{version}{suffix}"
            if candidate.is_file():
                return candidate
        return self.root / f"{template_id}@{version}.yaml"

    def _scan(self) -> dict[str, list[int]]:
        versions: dict[str, list[int]] = {}
        if not self.root.is_dir():
            return versions
        for entry in self.root.iterdir():
            if not entry.is_file():
                continue
            parsed = parse_template_filename(entry.name)
            if parsed is None:
                continue
            template_id, version = parsed
            versions.setdefault(template_id, []).append(version)
        return versions

    def list_ids(self) -> list[str]:
        """Return every template id once (its latest version stands for it), sorted."""
        return sorted(self._scan())

    def list_versions(self, template_id: str) -> list[int]:
        """Return the stored versions of ``template_id``, newest first.

        Args:
            template_id: Template id to look up.

        Returns:
            Distinct version numbers in descending order; empty if the id is unknown.
        """
        return sorted(set(self._scan().get(template_id, [])), reverse=True)

    def latest_version(self, template_id: str) -> int | None:
        versions = self.list_versions(template_id)
        return versions[0] if versions else None

    def load(self, template_id: str, version: int | None = None) -> TaskTemplate:
        """Load one template version, the latest when ``version`` is omitted.

        Raises:
            NotFoundError: If the id has no versions or the version is absent.
            ValidationError: If the stored document is structurally invalid.
        """
        target = version if version is not None else self.latest_version(template_id)
        if target is None:
            raise NotFoundError("Task template", template_id, f"Task template not found: {template_id}")

        ref = f"{template_id}@{target}"
        path = self.template_path(template_id, target)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise NotFoundError("Task template", ref, f"Task template not found: {ref}") from None

        try:
            document = load_yaml(raw)
        except yaml.YAMLError as exc:
            raise ValidationError(f"Task template {ref} is not valid YAML", [str(exc)]) from None
        if not isinstance(document, dict):
            raise ValidationError(f"Task template {ref} failed validation", ["/ did not parse as an object"])

        template = _validate_structure(document, f"Task template {ref} failed validation")
        if (template.id, template.version) != (template_id, target):
            raise ValidationError(
                f"Task template {ref} failed validation",
                [f"/ stored identity {template.ref} does not match file key {ref}"],
            )
        logger.debug("Loaded task template %s", ref)
        return template

    def put(self, template: TaskTemplate | Mapping[str, Any]) -> TemplateRef:
        """Validate and persist a template, overwriting the same ``(id, version)``.

        Args:
            template: A ``TaskTemplate`` or a raw template document.

        Returns:
            The stored id, version and file path.

        Raises:
            ValidationError: If the document or either embedded schema is invalid.
        """
        document = template.to_document() if isinstance(template, TaskTemplate) else dict(template)
        parsed = _validate_structure(document, "Invalid task template")
        check_schema(parsed.inputs_schema, f"Invalid task template {parsed.ref}: inputs_schema")
        check_schema(parsed.outputs_schema, f"Invalid task template {parsed.ref}: outputs_schema")

        path = self.template_path(parsed.id, parsed.version)
        with locked_file(path):
            overwrite = path.is_file()
            atomic_write_text(path, dump_yaml(parsed.to_document()))
        logger.info("%s task template %s", "Updated" if overwrite else "Created", parsed.ref)
        return TemplateRef(id=parsed.id, version=parsed.version, file=str(path))

    def deprecate(self, template_id: str, version: int, reason: str | None = None) -> DeprecationAck:
        """Soft-delete one version; it remains loadable by exact version.

        Args:
            template_id: Template id.
            version: Exact version to deprecate.
            reason: Optional note stored as ``deprecated_reason``.

        Returns:
            Acknowledgement carrying the deprecation timestamp.

        Raises:
            NotFoundError: If that version does not exist.
        """
        path = self.template_path(template_id, version)
        if not path.is_file():
            ref = f"{template_id}@{version}"
            raise NotFoundError("Task template", ref, f"Task template not found: {ref}")
        with locked_file(path):
            template = self.load(template_id, version)
            update: dict[str, Any] = {
                "active": False,
                "deprecated": True,
                "deprecated_at": datetime.now(UTC).isoformat(),
            }
            if reason and reason.strip():
                update["deprecated_reason"] = reason
            deprecated = template.model_copy(update=update)
            atomic_write_text(path, dump_yaml(deprecated.to_document()))
        logger.info("Deprecated task template %s@%s", template_id, version)
        return DeprecationAck(id=template_id, version=version, deprecated_at=update["deprecated_at"])
