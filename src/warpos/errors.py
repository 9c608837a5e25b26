from __future__ import annotations

from pydantic import ValidationError as PydanticValidationError


class WarposError(Exception):
    """Base class for every domain error raised by the orchestration core."""


class NotFoundError(WarposError):
    """A referenced profile, template, instance, plan or intent does not exist.

    The message names the identifier only; storage paths and low-level I/O
    errors are never included.
    """

    def __init__(self, kind: str, identifier: str, message: str | None = None) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(message or f"{kind} '{identifier}' not found")


class ValidationError(WarposError):
    """Structural or schema mismatch carrying every violation found."""

    def __init__(self, label: str, errors: list[str]) -> None:
        self.label = label
        self.errors = list(errors) or ["unknown validation error"]
        super().__init__(f"{label}: {'; '.join(self.errors)}")

    @classmethod
    def from_pydantic(cls, label: str, exc: PydanticValidationError) -> "ValidationError":
        lines: list[str] = []
        for error in exc.errors():
            location = "/".join(str(part) for part in error.get("loc", ()))
            lines.append(f"/{location} {error.get('msg', 'is invalid')}")
        return cls(label, lines)


class CycleError(WarposError):
    """Profile inheritance graph contains a cycle."""

    def __init__(self, profile_id: str) -> None:
        self.profile_id = profile_id
        super().__init__(f"Cycle detected in domain profile inheritance at: {profile_id}")


class StateError(WarposError):
    """Operation attempted from an illegal state."""


class ExecutionError(WarposError):
    """A plan item failed while being applied."""

    def __init__(self, item_id: str, message: str, *, returncode: int | None = None) -> None:
        self.item_id = item_id
        self.returncode = returncode
        super().__init__(message)
