from __future__ import annotations

import re

from .errors import ValidationError

PROJECT_SLUG_MAX_LENGTH = 120
_SLUG_RE = re.compile(r"[A-Za-z0-9._-]+")


def ensure_profile_id(profile_id: object) -> str:
    """Validate a repo-relative profile id such as ``example/developer``."""
    if not isinstance(profile_id, str) or not profile_id.strip():
        raise ValidationError("Invalid profile id", ["/ id must be a non-empty string"])
    problems: list[str] = []
    if "\\" in profile_id:
        problems.append("/ id must not contain backslashes")
    if profile_id.startswith("/"):
        problems.append("/ id must be relative (no leading '/')")
    if ".." in profile_id:
        problems.append("/ id must not contain '..'")
    if any(not segment for segment in profile_id.split("/")):
        problems.append("/ id must not contain empty segments")
    if any(not char.isprintable() for char in profile_id):
        problems.append("/ id must not contain control characters")
    if problems:
        raise ValidationError(f"Invalid profile id {profile_id!r}", problems)
    return profile_id


def ensure_project_slug(slug: object) -> str:
    if not isinstance(slug, str) or not slug:
        raise ValidationError("Invalid project_slug", ["/ project_slug must be a non-empty string"])
    problems: list[str] = []
    if len(slug) > PROJECT_SLUG_MAX_LENGTH:
        problems.append(f"/ project_slug must be at most {PROJECT_SLUG_MAX_LENGTH} characters")
    if not _SLUG_RE.fullmatch(slug):
        problems.append("/ allowed characters: letters, numbers, dot, underscore, dash")
    if ".." in slug:
        problems.append("/ project_slug must not contain '..'")
    if problems:
        raise ValidationError(f"Invalid project_slug {slug!r}", problems)
    return slug


def ensure_record_id(value: object, label: str) -> str:
    """Validate an instance or plan id used as a file stem."""
    if not isinstance(value, str) or not value or not _SLUG_RE.fullmatch(value) or ".." in value:
        raise ValidationError(f"Invalid {label}", [f"/ {label} must match [A-Za-z0-9._-]+ without '..'"])
    return value
