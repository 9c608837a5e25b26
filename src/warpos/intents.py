from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from .canonical import sha256_text
from .errors import NotFoundError
from .identifiers import ensure_project_slug
from .models import IntentDocument, IntentMeta
from .storage import atomic_write_text, locked_file

logger = logging.getLogger(__name__)


class IntentStore:
    """Per-project intent documents (``{slug}.md``) with sha256 metadata sidecars."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def document_path(self, project_slug: str) -> Path:
        return self.root / f"{ensure_project_slug(project_slug)}.md"

    def meta_path(self, project_slug: str) -> Path:
        return self.root / f"{ensure_project_slug(project_slug)}.meta.json"

    def list_project_slugs(self) -> list[str]:
        if not self.root.is_dir():
            return []
        return sorted(entry.stem for entry in self.root.iterdir() if entry.is_file() and entry.suffix == ".md")

    def _read_meta(self, project_slug: str) -> IntentMeta | None:
        try:
            raw = self.meta_path(project_slug).read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        try:
            return IntentMeta.model_validate_json(raw)
        except PydanticValidationError:
            logger.warning("Ignoring unreadable intent metadata for %s", project_slug)
            return None

    def get(self, project_slug: str) -> IntentDocument:
        try:
            markdown = self.document_path(project_slug).read_text(encoding="utf-8")
        except FileNotFoundError:
            raise NotFoundError(
                "Intent document",
                project_slug,
                f"Intent document for project '{project_slug}' not found",
            ) from None

        persisted = self._read_meta(project_slug)
        meta = IntentMeta(
            project_slug=project_slug,
            sha256=persisted.sha256 if persisted is not None else sha256_text(markdown),
            updated_at=persisted.updated_at if persisted is not None else datetime.now(UTC).isoformat(),
        )
        return IntentDocument(markdown=markdown, meta=meta)

    def current_hash(self, project_slug: str) -> str | None:
        """Return the stored document's hash, or ``None`` when the project has none."""
        try:
            return self.get(project_slug).meta.sha256
        except NotFoundError:
            return None

    def put(self, project_slug: str, markdown: str) -> IntentMeta:
        path = self.document_path(project_slug)
        meta = IntentMeta(
            project_slug=project_slug,
            sha256=sha256_text(markdown),
            updated_at=datetime.now(UTC).isoformat(),
        )
        with locked_file(path):
            atomic_write_text(path, markdown)
            atomic_write_text(self.meta_path(project_slug), json.dumps(meta.model_dump(), indent=2) + "\n")
        logger.info("Wrote intent document for %s (sha256=%s)", project_slug, meta.sha256[:12])
        return meta
