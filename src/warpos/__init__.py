from importlib.metadata import PackageNotFoundError, version

from .appliers import RecordingApplier, StepApplier, WorkspaceApplier
from .errors import CycleError, ExecutionError, NotFoundError, StateError, ValidationError, WarposError
from .executor import PlanExecutor, PlanStore
from .instances import InstanceGenerator
from .intents import IntentStore
from .models import (
    ExecutionPlan,
    ExecutionResult,
    InstanceStatus,
    PlanStatus,
    ResolvedProfile,
    TaskInstance,
    TaskTemplate,
)
from .profiles import ProfileResolver, ProfileStore, compile_framework
from .schema import SchemaValidationResult, validate_schema
from .services import Services, build_services
from .settings import RuntimeSettings
from .templates import TemplateLibrary


def get_version() -> str:
    try:
        return version(__name__)
    except PackageNotFoundError:
        return "0.0.0"


__all__ = [
    "CycleError",
    "ExecutionError",
    "ExecutionPlan",
    "ExecutionResult",
    "InstanceGenerator",
    "InstanceStatus",
    "IntentStore",
    "NotFoundError",
    "PlanExecutor",
    "PlanStatus",
    "PlanStore",
    "ProfileResolver",
    "ProfileStore",
    "RecordingApplier",
    "ResolvedProfile",
    "RuntimeSettings",
    "SchemaValidationResult",
    "Services",
    "StateError",
    "StepApplier",
    "TaskInstance",
    "TaskTemplate",
    "TemplateLibrary",
    "ValidationError",
    "WarposError",
    "WorkspaceApplier",
    "build_services",
    "compile_framework",
    "get_version",
    "validate_schema",
]
