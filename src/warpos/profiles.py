from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable, Iterator, Sequence

import yaml

from .errors import CycleError, NotFoundError, ValidationError
from .identifiers import ensure_profile_id
from .models import ObservationGroup, ResolvedProfile
from .storage import atomic_write_text, dump_yaml, load_yaml, locked_file

logger = logging.getLogger(__name__)

_PROFILE_SUFFIXES = (".yaml", ".yml")
_OBSERVATIONS_KEY = "observations"


def collect_observation_groups(node: Any, path: tuple[str, ...] = ()) -> list[ObservationGroup]:
    """Flatten a profile tree into ``(group_path, observations)`` pairs.

    A mapping is a leaf group iff it directly holds an ``observations`` list;
    nested mappings are visited in key order. ``group_path`` is the dotted
    path to the containing mapping (``observations`` at the root).
    """
    groups: list[ObservationGroup] = []
    if not isinstance(node, dict):
        return groups
    for key, value in node.items():
        if key == _OBSERVATIONS_KEY and isinstance(value, list):
            observations = [item for item in value if isinstance(item, str)]
            if observations:
                group_path = ".".join(path) if path else _OBSERVATIONS_KEY
                groups.append(ObservationGroup(group_path=group_path, observations=observations))
            continue
        if isinstance(value, dict):
            groups.extend(collect_observation_groups(value, (*path, str(key))))
    return groups


def compile_framework(profiles: Iterable[ResolvedProfile]) -> str:
    """Render resolved profiles into one instruction text.

    The output format is consumed verbatim by model prompts and stored plans;
    keep it byte-stable.
    """
    lines: list[str] = []
    for profile in profiles:
        lines.append(f"# Profile: {profile.id}")
        if profile.description:
            lines.append(profile.description)
        for group in profile.groups:
            lines.append(f"\n## {group.group_path}")
            lines.extend(f"- {observation}" for observation in group.observations)
        lines.append("")
    return "\n".join(lines).strip()


class ProfileStore:
    """YAML-backed store of domain profiles keyed by ``/``-separated ids."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def profile_path(self, profile_id: str) -> Path:
        ensure_profile_id(profile_id)
        base = self.root.joinpath(*profile_id.split("/"))
        for suffix in _PROFILE_SUFFIXES:
            candidate = base.with_name(base.name + suffix)
            if candidate.is_file():
                return candidate
        return base.with_name(base.name + _PROFILE_SUFFIXES[0])

    def list_ids(self) -> list[str]:
        if not self.root.is_dir():
            return []
        ids: set[str] = set()
        for path in self.root.rglob("*"):
            if path.is_file() and path.suffix.lower() in _PROFILE_SUFFIXES:
                ids.add(path.relative_to(self.root).with_suffix("").as_posix())
        return sorted(ids)

    def get_text(self, profile_id: str) -> str:
        path = self.profile_path(profile_id)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise NotFoundError("Profile", profile_id) from None

    def _parse(self, profile_id: str, text: str) -> dict[str, Any]:
        try:
            parsed = load_yaml(text)
        except yaml.YAMLError as exc:
            raise ValidationError(f"Domain profile {profile_id} is not valid YAML", [str(exc)]) from None
        if not isinstance(parsed, dict):
            raise ValidationError(
                f"Domain profile {profile_id}",
                ["/ document must parse to a YAML mapping/object"],
            )
        return parsed

    def load(self, profile_id: str) -> ResolvedProfile:
        text = self.get_text(profile_id)
        profile = self._parse(profile_id, text)
        logger.debug("Loaded profile %s", profile_id)
        return ResolvedProfile(
            id=profile_id,
            file_path=str(self.profile_path(profile_id)),
            profile=profile,
            groups=collect_observation_groups(profile),
        )

    def put(self, profile_id: str, yaml_text: str) -> Path:
        """Create or overwrite a profile; the text must parse to a mapping."""
        self._parse(profile_id, yaml_text)
        path = self.profile_path(profile_id)
        with locked_file(path):
            atomic_write_text(path, yaml_text)
        logger.info("Wrote profile %s", profile_id)
        return path

    def deprecate(self, profile_id: str, reason: str | None = None) -> Path:
        """Mark a profile deprecated in place; it stays loadable."""
        path = self.profile_path(profile_id)
        if not path.is_file():
            raise NotFoundError("Profile", profile_id)
        with locked_file(path):
            profile = self._parse(profile_id, self.get_text(profile_id))
            profile["deprecated"] = True
            profile["deprecated_at"] = datetime.now(UTC).isoformat()
            if reason and reason.strip():
                profile["deprecated_reason"] = reason
            atomic_write_text(path, dump_yaml(profile))
        logger.info("Deprecated profile %s", profile_id)
        return path


class ProfileResolver:
    """Resolves ``inherits`` relations and compiles profile instruction text."""

    def __init__(self, store: ProfileStore) -> None:
        self.store = store

    def _enter(self, profile_id: str, visiting: set[str]) -> tuple[ResolvedProfile, Iterator[str]]:
        visiting.add(profile_id)
        profile = self.store.load(profile_id)
        return profile, iter(profile.inherited_ids())

    def resolve(self, entry_ids: Sequence[str]) -> list[ResolvedProfile]:
        """Return profiles in post-order: every ancestor precedes its dependants.

        A profile reachable through several parents is emitted once, across
        all entries of the call.

        Raises:
            CycleError: If an inheritance cycle is reachable from an entry.
            NotFoundError: If an entry or ancestor profile does not exist.
        """
        resolved: list[ResolvedProfile] = []
        visiting: set[str] = set()
        visited: set[str] = set()

        for entry_id in entry_ids:
            if entry_id in visited:
                continue
            stack = [self._enter(entry_id, visiting)]
            while stack:
                profile, parents = stack[-1]
                parent_id = next(parents, None)
                if parent_id is None:
                    stack.pop()
                    visiting.discard(profile.id)
                    visited.add(profile.id)
                    resolved.append(profile)
                    continue
                if parent_id in visited:
                    continue
                if parent_id in visiting:
                    raise CycleError(parent_id)
                stack.append(self._enter(parent_id, visiting))

        logger.debug("Resolved %d profile(s) from entries %s", len(resolved), list(entry_ids))
        return resolved

    def compile(self, profiles: Sequence[ResolvedProfile]) -> str:
        return compile_framework(profiles)

    def resolve_and_compile(self, entry_ids: Sequence[str]) -> str:
        return self.compile(self.resolve(entry_ids))
