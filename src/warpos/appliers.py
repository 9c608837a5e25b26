"""Step appliers: the side-effecting half of plan execution.

``PlanExecutor.execute`` owns the state machine; an applier only performs one
plan item and returns its result line, raising to signal failure.
"""

from __future__ import annotations

import logging
import subprocess
from datetime import UTC, datetime
from pathlib import Path
from typing import Protocol

from .errors import ExecutionError
from .models import ExecutionPlan, TaskStep, VerificationStep
from .settings import RuntimeSettings

logger = logging.getLogger(__name__)

_OUTPUT_TAIL_CHARS = 2_000


def step_line(step: TaskStep) -> str:
    return f"[Step {step.id}] {step.instruction}"


def verification_line(check: VerificationStep) -> str:
    return f"[Verify {check.id}] {check.command}"


class StepApplier(Protocol):
    def apply_step(self, plan: ExecutionPlan, step: TaskStep) -> str: ...

    def apply_verification(self, plan: ExecutionPlan, check: VerificationStep) -> str: ...


class RecordingApplier:
    """Records what would happen without touching the workspace."""

    def apply_step(self, plan: ExecutionPlan, step: TaskStep) -> str:
        return step_line(step)

    def apply_verification(self, plan: ExecutionPlan, check: VerificationStep) -> str:
        return verification_line(check)


class WorkspaceApplier:
    """Journals step instructions and runs verification commands in the workspace.

    Each plan gets ``{journal_dir}/{plan_id}.md``; the compiled profile
    framework is written once at the head of the journal. Verification
    commands run through the shell with ``workspace`` as the working directory.
    """

    def __init__(self, workspace: Path, journal_dir: Path, *, timeout_seconds: int = 600) -> None:
        self.workspace = workspace
        self.journal_dir = journal_dir
        self.timeout_seconds = timeout_seconds

    def journal_path(self, plan: ExecutionPlan) -> Path:
        return self.journal_dir / f"{plan.plan_id}.md"

    def _append(self, plan: ExecutionPlan, text: str) -> None:
        path = self.journal_path(plan)
        path.parent.mkdir(parents=True, exist_ok=True)
        is_new = not path.exists()
        with path.open("a", encoding="utf-8") as handle:
            if is_new:
                handle.write(f"# Plan {plan.plan_id} ({plan.template_id}@{plan.template_version})\n\n")
                if plan.domain_framework:
                    handle.write(f"{plan.domain_framework}\n\n")
            handle.write(text)

    def apply_step(self, plan: ExecutionPlan, step: TaskStep) -> str:
        stamp = datetime.now(UTC).isoformat()
        self._append(plan, f"## Step {step.id} ({stamp})\n\n{step.instruction}\n\n")
        logger.info("Plan %s applied step %s", plan.plan_id, step.id)
        return step_line(step)

    def apply_verification(self, plan: ExecutionPlan, check: VerificationStep) -> str:
        logger.info("Plan %s running verification %s: %s", plan.plan_id, check.id, check.command)
        try:
            completed = subprocess.run(
                check.command,
                shell=True,
                cwd=str(self.workspace),
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired:
            self._append(plan, f"## Verify {check.id}: timed out after {self.timeout_seconds}s\n\n")
            raise ExecutionError(
                check.id,
                f"Verification '{check.id}' timed out after {self.timeout_seconds}s",
            ) from None

        output = (completed.stdout + completed.stderr)[-_OUTPUT_TAIL_CHARS:]
        self._append(
            plan,
            f"## Verify {check.id}: exit {completed.returncode}\n\n```\n$ {check.command}\n{output}\n```\n\n",
        )
        if completed.returncode != 0:
            raise ExecutionError(
                check.id,
                f"Verification '{check.id}' failed with exit code {completed.returncode}",
                returncode=completed.returncode,
            )
        return verification_line(check)


def build_applier(settings: RuntimeSettings) -> StepApplier:
    if settings.execution_mode == "record":
        return RecordingApplier()
    return WorkspaceApplier(
        settings.root_path,
        settings.journal_path,
        timeout_seconds=settings.verification_timeout_seconds,
    )
