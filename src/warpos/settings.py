from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

EXECUTION_MODES = frozenset({"apply", "record"})


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    root: str = ""
    profiles_dir: str = "profiles/domains"
    templates_dir: str = "task-templates"
    instances_dir: str = "task-instances"
    intents_dir: str = "intents"
    plans_dir: str = ".warpos/plans"
    journal_dir: str = ".warpos/journal"
    execution_mode: str = "apply"
    verification_timeout_seconds: int = 600
    llm_base_url: str = "https://api.z.ai/v1"
    llm_model: str = "z-ai"
    llm_timeout_seconds: int = 120

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            root=os.getenv("WARPOS_ROOT", ""),
            profiles_dir=os.getenv("WARPOS_PROFILES_DIR", "profiles/domains"),
            templates_dir=os.getenv("WARPOS_TEMPLATES_DIR", "task-templates"),
            instances_dir=os.getenv("WARPOS_INSTANCES_DIR", "task-instances"),
            intents_dir=os.getenv("WARPOS_INTENTS_DIR", "intents"),
            plans_dir=os.getenv("WARPOS_PLANS_DIR", ".warpos/plans"),
            journal_dir=os.getenv("WARPOS_JOURNAL_DIR", ".warpos/journal"),
            execution_mode=os.getenv("WARPOS_EXECUTION_MODE", "apply"),
            verification_timeout_seconds=_get_env_int("WARPOS_VERIFY_TIMEOUT", default=600, minimum=1, maximum=86_400),
            llm_base_url=os.getenv("ZAI_BASE_URL", "https://api.z.ai/v1"),
            llm_model=os.getenv("ZAI_MODEL", "z-ai"),
            llm_timeout_seconds=_get_env_int("WARPOS_LLM_TIMEOUT", default=120, minimum=1, maximum=3_600),
        ).normalized()

    @property
    def root_path(self) -> Path:
        """Return the storage root as a Path, defaulting to cwd if unset."""
        return Path(self.root) if self.root else Path.cwd()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        for env_name, value in (
            ("WARPOS_PROFILES_DIR", self.profiles_dir),
            ("WARPOS_TEMPLATES_DIR", self.templates_dir),
            ("WARPOS_INSTANCES_DIR", self.instances_dir),
            ("WARPOS_INTENTS_DIR", self.intents_dir),
            ("WARPOS_PLANS_DIR", self.plans_dir),
            ("WARPOS_JOURNAL_DIR", self.journal_dir),
        ):
            if not value.strip():
                raise ValueError(f"{env_name} must be non-empty")

        execution_mode = self.execution_mode.strip().lower()
        if execution_mode not in EXECUTION_MODES:
            raise ValueError("WARPOS_EXECUTION_MODE must be one of: apply, record")

        llm_base_url = self.llm_base_url.strip().rstrip("/")
        if not llm_base_url:
            raise ValueError("ZAI_BASE_URL must be non-empty")
        llm_model = self.llm_model.strip()
        if not llm_model:
            raise ValueError("ZAI_MODEL must be non-empty")

        return RuntimeSettings(
            root=self.root.strip(),
            profiles_dir=self.profiles_dir,
            templates_dir=self.templates_dir,
            instances_dir=self.instances_dir,
            intents_dir=self.intents_dir,
            plans_dir=self.plans_dir,
            journal_dir=self.journal_dir,
            execution_mode=execution_mode,
            verification_timeout_seconds=self.verification_timeout_seconds,
            llm_base_url=llm_base_url,
            llm_model=llm_model,
            llm_timeout_seconds=self.llm_timeout_seconds,
        )

    def resolve(self, value: str) -> Path:
        path = Path(value)
        return path if path.is_absolute() else self.root_path / path

    @property
    def profiles_path(self) -> Path:
        return self.resolve(self.profiles_dir)

    @property
    def templates_path(self) -> Path:
        return self.resolve(self.templates_dir)

    @property
    def instances_path(self) -> Path:
        return self.resolve(self.instances_dir)

    @property
    def intents_path(self) -> Path:
        return self.resolve(self.intents_dir)

    @property
    def plans_path(self) -> Path:
        return self.resolve(self.plans_dir)

    @property
    def journal_path(self) -> Path:
        return self.resolve(self.journal_dir)


def _get_env_int(name: str, default: int, minimum: int, maximum: int = 10_000_000) -> int:
    """Read a bounded integer setting; unset means ``default``, anything else must parse and fit."""
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got: {raw!r}") from exc
    if parsed < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got: {parsed}")
    if parsed > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got: {parsed}")
    return parsed
