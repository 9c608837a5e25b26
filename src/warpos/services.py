from __future__ import annotations

from dataclasses import dataclass

from .appliers import StepApplier, build_applier
from .executor import PlanExecutor, PlanStore
from .instances import InstanceGenerator
from .intents import IntentStore
from .profiles import ProfileResolver, ProfileStore
from .settings import RuntimeSettings
from .templates import TemplateLibrary


@dataclass(frozen=True)
class Services:
    """One explicit set of stores bound to a single storage root."""

    settings: RuntimeSettings
    profile_store: ProfileStore
    profiles: ProfileResolver
    templates: TemplateLibrary
    instances: InstanceGenerator
    intents: IntentStore
    plans: PlanStore
    executor: PlanExecutor


def build_services(settings: RuntimeSettings, *, applier: StepApplier | None = None) -> Services:
    profile_store = ProfileStore(settings.profiles_path)
    profiles = ProfileResolver(profile_store)
    templates = TemplateLibrary(settings.templates_path)
    instances = InstanceGenerator(settings.instances_path, templates)
    intents = IntentStore(settings.intents_path)
    plans = PlanStore(settings.plans_path)
    executor = PlanExecutor(
        instances,
        templates,
        profiles,
        plans,
        applier=applier if applier is not None else build_applier(settings),
        intents=intents,
    )
    return Services(
        settings=settings,
        profile_store=profile_store,
        profiles=profiles,
        templates=templates,
        instances=instances,
        intents=intents,
        plans=plans,
        executor=executor,
    )
