"""Two-phase execution: ``prepare`` renders an inspectable plan, ``execute`` applies it once.

Plan states move strictly forward::

    pending -> executing -> completed | failed

``execute`` claims a plan with a compare-and-swap on its status under an
exclusive per-plan file lock, so two concurrent calls for one plan cannot
both apply it.
"""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from pathlib import Path

import yaml
from pydantic import ValidationError as PydanticValidationError

from .appliers import RecordingApplier, StepApplier
from .errors import NotFoundError, StateError, ValidationError
from .identifiers import ensure_record_id
from .instances import InstanceGenerator
from .intents import IntentStore
from .models import (
    PLAN_STATUS_TRANSITIONS,
    ExecutionPlan,
    ExecutionResult,
    InstanceStatus,
    PlanStatus,
    TaskInstance,
    TaskStep,
    TaskTemplate,
    VerificationStep,
)
from .profiles import ProfileResolver
from .rendering import build_variables, render_text
from .storage import atomic_write_text, dump_yaml, load_yaml, locked_file
from .templates import TemplateLibrary

logger = logging.getLogger(__name__)


class PlanStore:
    """YAML plan records under ``{root}/{plan_id}.yaml``."""

    def __init__(self, root: Path) -> None:
        self.root = root

    def plan_path(self, plan_id: str) -> Path:
        return self.root / f"{ensure_record_id(plan_id, 'plan_id')}.yaml"

    def _read(self, plan_id: str) -> ExecutionPlan:
        try:
            raw = self.plan_path(plan_id).read_text(encoding="utf-8")
        except FileNotFoundError:
            raise NotFoundError("Execution plan", plan_id) from None
        try:
            return ExecutionPlan.model_validate(load_yaml(raw))
        except yaml.YAMLError as exc:
            raise ValidationError(f"Execution plan '{plan_id}' is not valid YAML", [str(exc)]) from None
        except PydanticValidationError as exc:
            raise ValidationError.from_pydantic(f"Execution plan '{plan_id}' failed validation", exc) from None

    def _write(self, plan: ExecutionPlan) -> None:
        atomic_write_text(self.plan_path(plan.plan_id), dump_yaml(plan.to_document()))

    def create(self, plan: ExecutionPlan) -> None:
        """Persist a new plan record.

        Raises:
            ValueError: If a record with the same ``plan_id`` already exists.
        """
        path = self.plan_path(plan.plan_id)
        with locked_file(path):
            if path.exists():
                raise ValueError(f"Execution plan already exists: {plan.plan_id}")
            self._write(plan)
        logger.info("Created plan %s for instance %s", plan.plan_id, plan.instance_id)

    def load(self, plan_id: str) -> ExecutionPlan:
        """Read a plan record.

        Raises:
            NotFoundError: If no record exists for ``plan_id``.
            ValidationError: If the id is unsafe or the record is malformed.
        """
        return self._read(plan_id)

    def list_ids(self, project_slug: str | None = None) -> list[str]:
        """Return sorted plan ids, optionally only those for ``project_slug``."""
        if not self.root.is_dir():
            return []
        plan_ids = sorted(entry.stem for entry in self.root.iterdir() if entry.is_file() and entry.suffix == ".yaml")
        if project_slug is None:
            return plan_ids
        return [plan_id for plan_id in plan_ids if self._read(plan_id).project_slug == project_slug]

    def _locked_update(self, plan_id: str, expected: PlanStatus | None, new_status: PlanStatus) -> ExecutionPlan:
        path = self.plan_path(plan_id)
        if not path.is_file():
            raise NotFoundError("Execution plan", plan_id)
        with locked_file(path):
            plan = self._read(plan_id)
            if expected is not None and plan.status != expected:
                raise StateError(f"Cannot execute plan '{plan_id}' with status: {plan.status.value}")
            if new_status not in PLAN_STATUS_TRANSITIONS[plan.status]:
                raise StateError(
                    f"Illegal plan status transition for {plan_id}: {plan.status.value} -> {new_status.value}"
                )
            updated = plan.model_copy(update={"status": new_status, "updated_at": datetime.now(UTC)})
            self._write(updated)
        logger.info("Plan %s status %s -> %s", plan_id, plan.status.value, new_status.value)
        return updated

    def claim(self, plan_id: str) -> ExecutionPlan:
        """Atomically move a pending plan to ``executing``.

        Raises:
            StateError: If the plan is not ``pending``.
        """
        return self._locked_update(plan_id, PlanStatus.PENDING, PlanStatus.EXECUTING)

    def transition(self, plan_id: str, new_status: PlanStatus) -> ExecutionPlan:
        """Move a plan to ``new_status`` under its lock.

        Args:
            plan_id: Plan to update.
            new_status: Target status; must be a legal successor of the current one.

        Returns:
            The updated plan with a fresh ``updated_at``.

        Raises:
            NotFoundError: If the plan does not exist.
            StateError: If the transition is not allowed.
        """
        return self._locked_update(plan_id, None, new_status)


class PlanExecutor:
    def __init__(
        self,
        instances: InstanceGenerator,
        templates: TemplateLibrary,
        profiles: ProfileResolver,
        plans: PlanStore,
        applier: StepApplier | None = None,
        intents: IntentStore | None = None,
    ) -> None:
        self.instances = instances
        self.templates = templates
        self.profiles = profiles
        self.plans = plans
        self.applier = applier if applier is not None else RecordingApplier()
        self.intents = intents

    def _warn_on_drift(self, instance: TaskInstance, template: TaskTemplate) -> None:
        if instance.template_fingerprint and instance.template_fingerprint != template.content_fingerprint():
            logger.warning(
                "Template %s changed since instance %s was generated",
                template.ref,
                instance.instance_id,
            )
        if self.intents is not None:
            current = self.intents.current_hash(instance.project_slug)
            if current is not None and current != instance.intent_hash:
                logger.warning(
                    "Intent document for %s changed since instance %s was generated",
                    instance.project_slug,
                    instance.instance_id,
                )

    def prepare(self, project_slug: str, instance_id: str) -> ExecutionPlan:
        """Render the locked template against the instance inputs into a new pending plan.

        Has no side effects beyond writing the plan record; the instance is
        not modified and each call produces an independent plan.
        """
        instance = self.instances.get(project_slug, instance_id)
        template = self.templates.load(instance.template_id, instance.template_version)
        self._warn_on_drift(instance, template)

        domain_framework: str | None = None
        if instance.domain_profiles:
            domain_framework = self.profiles.resolve_and_compile(instance.domain_profiles)

        variables = build_variables(instance.inputs)
        plan = ExecutionPlan(
            plan_id=str(uuid.uuid4()),
            instance_id=instance.instance_id,
            project_slug=instance.project_slug,
            template_id=instance.template_id,
            template_version=instance.template_version,
            created_at=datetime.now(UTC),
            steps=[TaskStep(id=step.id, instruction=render_text(step.instruction, variables)) for step in template.steps],
            verification=[
                VerificationStep(id=check.id, command=render_text(check.command, variables))
                for check in template.verification
            ],
            domain_framework=domain_framework,
            status=PlanStatus.PENDING,
        )
        self.plans.create(plan)
        return plan

    def execute(self, plan_id: str) -> ExecutionResult:
        """Apply a pending plan exactly once: steps in order, then verification in order.

        Raises:
            StateError: If the plan is not ``pending``.
            Exception: Whatever an applier raised; the plan is marked ``failed`` first.
        """
        plan = self.plans.claim(plan_id)
        results: list[str] = []
        try:
            for step in plan.steps:
                results.append(self.applier.apply_step(plan, step))
            for check in plan.verification:
                results.append(self.applier.apply_verification(plan, check))
        except Exception as exc:
            logger.error("Plan %s failed after %d item(s): %s", plan_id, len(results), exc)
            failed = self.plans.transition(plan_id, PlanStatus.FAILED)
            self._record_instance_outcome(failed, InstanceStatus.FAILED)
            raise

        completed = self.plans.transition(plan_id, PlanStatus.COMPLETED)
        self._record_instance_outcome(completed, InstanceStatus.EXECUTED)
        return ExecutionResult(ok=True, plan=completed, results=results)

    def _record_instance_outcome(self, plan: ExecutionPlan, status: InstanceStatus) -> None:
        try:
            self.instances.record_status(plan.project_slug, plan.instance_id, status)
        except NotFoundError:
            logger.warning(
                "Instance %s/%s no longer exists; plan %s outcome not recorded on it",
                plan.project_slug,
                plan.instance_id,
                plan.plan_id,
            )

    def get_plan(self, plan_id: str) -> ExecutionPlan:
        """Return the current stored state of a plan.

        Raises:
            NotFoundError: If no such plan exists.
        """
        return self.plans.load(plan_id)

    def list_plans(self, project_slug: str | None = None) -> list[str]:
        return self.plans.list_ids(project_slug)
