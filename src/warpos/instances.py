from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Mapping, Sequence

from pydantic import ValidationError as PydanticValidationError

from .errors import NotFoundError, ValidationError
from .identifiers import ensure_profile_id, ensure_project_slug, ensure_record_id
from .models import InstanceStatus, TaskInstance
from .schema import check_schema, ensure_valid
from .storage import atomic_write_text, locked_file
from .templates import TemplateLibrary

logger = logging.getLogger(__name__)


class InstanceGenerator:
    """Creates and reads locked task instances under ``{root}/{project_slug}/``.

    Instance files are append-only: created exclusively, then only their
    ``status`` is rewritten (by plan execution).
    """

    def __init__(self, root: Path, templates: TemplateLibrary) -> None:
        self.root = root
        self.templates = templates

    def project_dir(self, project_slug: str) -> Path:
        return self.root / ensure_project_slug(project_slug)

    def instance_path(self, project_slug: str, instance_id: str) -> Path:
        return self.project_dir(project_slug) / f"{ensure_record_id(instance_id, 'instance_id')}.json"

    def list_ids(self, project_slug: str) -> list[str]:
        """Return instance ids stored for ``project_slug``; empty for an unknown project.

        Raises:
            ValidationError: If ``project_slug`` is not a safe slug.
        """
        directory = self.project_dir(project_slug)
        if not directory.is_dir():
            return []
        return sorted(entry.stem for entry in directory.iterdir() if entry.is_file() and entry.suffix == ".json")

    def _not_found(self, project_slug: str, instance_id: str) -> NotFoundError:
        return NotFoundError(
            "Task instance",
            instance_id,
            f"Task instance '{instance_id}' not found in project '{project_slug}'",
        )

    def _read(self, path: Path, project_slug: str, instance_id: str) -> TaskInstance:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise self._not_found(project_slug, instance_id) from None
        try:
            return TaskInstance.model_validate_json(raw)
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic("Invalid task instance structure", exc) from None

    def get(self, project_slug: str, instance_id: str) -> TaskInstance:
        """Load one stored instance.

        Args:
            project_slug: Project the instance belongs to.
            instance_id: Id returned by ``generate``.

        Returns:
            The persisted ``TaskInstance``.

        Raises:
            ValidationError: If either id is unsafe or the record is malformed.
            NotFoundError: If no such instance exists.
        """
        path = self.instance_path(project_slug, instance_id)
        instance = self._read(path, project_slug, instance_id)
        logger.debug("Loaded task instance %s/%s", project_slug, instance_id)
        return instance

    def generate(
        self,
        project_slug: str,
        template_id: str,
        template_version: int,
        inputs: Mapping[str, Any],
        intent_hash: str,
        domain_profiles: Sequence[str],
    ) -> TaskInstance:
        """Lock a template version and validated inputs into a new instance.

        When ``domain_profiles`` is empty the template's
        ``domain_profiles_default`` applies.

        Raises:
            NotFoundError: If the template version does not exist.
            ValidationError: If any argument or input violates its schema; all
                input violations are reported together and nothing is written.
        """
        ensure_project_slug(project_slug)
        problems: list[str] = []
        if isinstance(template_version, bool) or not isinstance(template_version, int) or template_version < 1:
            problems.append("/template_version must be a positive integer")
        if not isinstance(inputs, Mapping):
            problems.append("/inputs must be an object")
        if not isinstance(intent_hash, str) or not intent_hash.strip():
            problems.append("/intent_hash must be a non-empty string")
        if problems:
            raise ValidationError("Invalid task instance request", problems)
        for profile_id in domain_profiles:
            ensure_profile_id(profile_id)

        template = self.templates.load(template_id, template_version)
        if template.deprecated:
            logger.warning("Generating an instance from deprecated template %s", template.ref)

        check_schema(template.inputs_schema, f"Task template {template.ref} has an invalid inputs_schema")
        ensure_valid(template.inputs_schema, dict(inputs), f"Input validation failed for template {template.ref}")

        profiles = list(domain_profiles) or list(template.domain_profiles_default or [])
        instance = TaskInstance(
            instance_id=str(uuid.uuid4()),
            project_slug=project_slug,
            template_id=template.id,
            template_version=template.version,
            inputs=dict(inputs),
            intent_hash=intent_hash,
            domain_profiles=profiles,
            created_at=datetime.now(UTC),
            status=InstanceStatus.PENDING,
            template_fingerprint=template.content_fingerprint(),
        )

        path = self.instance_path(project_slug, instance.instance_id)
        with locked_file(path):
            if path.exists():
                raise ValueError(f"Task instance already exists: {instance.instance_id}")
            atomic_write_text(path, instance.model_dump_json(indent=2))
        logger.info(
            "Generated task instance %s/%s from %s",
            project_slug,
            instance.instance_id,
            template.ref,
        )
        return instance

    def record_status(self, project_slug: str, instance_id: str, status: InstanceStatus) -> TaskInstance:
        """Rewrite only the ``status`` field of an existing instance.

        Returns:
            The updated instance.

        Raises:
            NotFoundError: If the instance does not exist.
        """
        path = self.instance_path(project_slug, instance_id)
        if not path.is_file():
            raise self._not_found(project_slug, instance_id)
        with locked_file(path):
            instance = self._read(path, project_slug, instance_id)
            updated = instance.model_copy(update={"status": status})
            atomic_write_text(path, updated.model_dump_json(indent=2))
        logger.info("Task instance %s/%s status -> %s", project_slug, instance_id, status.value)
        return updated
