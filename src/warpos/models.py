from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .canonical import content_fingerprint


class InstanceStatus(str, Enum):
    PENDING = "pending"
    PREPARED = "prepared"
    EXECUTED = "executed"
    FAILED = "failed"


class PlanStatus(str, Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


PLAN_STATUS_TRANSITIONS: dict[PlanStatus, frozenset[PlanStatus]] = {
    PlanStatus.PENDING: frozenset({PlanStatus.EXECUTING}),
    PlanStatus.EXECUTING: frozenset({PlanStatus.COMPLETED, PlanStatus.FAILED}),
    PlanStatus.COMPLETED: frozenset(),
    PlanStatus.FAILED: frozenset(),
}

# Template fields that change on deprecation without changing the contract.
DEPRECATION_FIELDS = frozenset({"active", "deprecated", "deprecated_at", "deprecated_reason"})


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class ObservationGroup(BaseModel):
    group_path: str
    observations: list[str]


class ResolvedProfile(BaseModel):
    """A loaded profile plus its flattened observation groups.

    Recomputed on every load; never cached across resolution calls.
    """

    id: str
    file_path: str
    profile: dict[str, Any]
    groups: list[ObservationGroup] = Field(default_factory=list)

    @property
    def description(self) -> str | None:
        value = self.profile.get("description")
        return value if isinstance(value, str) and value else None

    def inherited_ids(self) -> list[str]:
        relations = self.profile.get("relations")
        if not isinstance(relations, list):
            return []
        targets: list[str] = []
        for relation in relations:
            if not isinstance(relation, dict):
                continue
            kind = relation.get("type", relation.get("kind"))
            target = relation.get("target")
            if kind == "inherits" and isinstance(target, str):
                targets.append(target)
        return targets


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


class TaskStep(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    instruction: str


class VerificationStep(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    command: str


class TaskTemplate(BaseModel):
    """Versioned task contract. Identity is ``(id, version)``."""

    model_config = ConfigDict(extra="allow")

    id: str
    version: int = Field(ge=1)
    description: str
    inputs_schema: dict[str, Any]
    outputs_schema: dict[str, Any]
    steps: list[TaskStep] = Field(min_length=1)
    verification: list[VerificationStep] = Field(default_factory=list)
    domain_profiles_default: list[str] | None = None
    active: bool | None = None
    deprecated: bool | None = None
    deprecated_at: str | None = None
    deprecated_reason: str | None = None

    @property
    def ref(self) -> str:
        return f"{self.id}@{self.version}"

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def content_fingerprint(self) -> str:
        """Fingerprint of the contract content, ignoring deprecation metadata."""
        document = {key: value for key, value in self.to_document().items() if key not in DEPRECATION_FIELDS}
        return content_fingerprint(document)


class TemplateRef(BaseModel):
    id: str
    version: int
    file: str


class DeprecationAck(BaseModel):
    id: str
    version: int
    deprecated: bool = True
    deprecated_at: str


# ---------------------------------------------------------------------------
# Instances and plans
# ---------------------------------------------------------------------------


class TaskInstance(BaseModel):
    """Immutable binding of one template version to one project's inputs.

    ``status`` is the only field ever rewritten after creation.
    """

    instance_id: str = Field(min_length=1)
    project_slug: str = Field(min_length=1)
    template_id: str = Field(min_length=1)
    template_version: int = Field(ge=1)
    inputs: dict[str, Any]
    intent_hash: str = Field(min_length=1)
    domain_profiles: list[str] = Field(default_factory=list)
    created_at: datetime
    status: InstanceStatus = InstanceStatus.PENDING
    template_fingerprint: str | None = None


class ExecutionPlan(BaseModel):
    plan_id: str
    instance_id: str
    project_slug: str
    template_id: str
    template_version: int
    created_at: datetime
    updated_at: datetime | None = None
    steps: list[TaskStep]
    verification: list[VerificationStep] = Field(default_factory=list)
    domain_framework: str | None = None
    status: PlanStatus = PlanStatus.PENDING

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ExecutionResult(BaseModel):
    ok: bool
    plan: ExecutionPlan
    results: list[str]


# ---------------------------------------------------------------------------
# Intent documents
# ---------------------------------------------------------------------------


class IntentMeta(BaseModel):
    project_slug: str
    sha256: str
    updated_at: str


class IntentDocument(BaseModel):
    markdown: str
    meta: IntentMeta
