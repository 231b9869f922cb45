from __future__ import annotations

from dataclasses import dataclass

from opstrail.adapters.tasks import TaskHooks
from opstrail.core.config import Settings, settings
from opstrail.core.contracts import ContractValidator
from opstrail.services.events.analytics import OpsAnalytics
from opstrail.services.events.recorder import EventRecorder
from opstrail.services.events.retention import RetentionTask
from opstrail.services.events.signals import SignalBus
from opstrail.services.events.store import EventStore
from opstrail.services.events.subscribers import TelemetrySubscribers


@dataclass
class Runtime:
    config: Settings
    contracts: ContractValidator
    event_store: EventStore
    bus: SignalBus
    recorder: EventRecorder
    subscribers: TelemetrySubscribers
    task_hooks: TaskHooks
    retention: RetentionTask
    analytics: OpsAnalytics


def build_runtime(
    *,
    configuration: Settings | None = None,
    database_url: str | None = None,
    bus: SignalBus | None = None,
    task_adapter: str = "inline",
) -> Runtime:
    config = configuration if configuration is not None else settings
    contracts = ContractValidator()
    event_store = EventStore(database_url or config.database_url, validator=contracts)
    bus = bus if bus is not None else SignalBus()
    recorder = EventRecorder(event_store, config)
    subscribers = TelemetrySubscribers(recorder)
    subscribers.install(bus)

    return Runtime(
        config=config,
        contracts=contracts,
        event_store=event_store,
        bus=bus,
        recorder=recorder,
        subscribers=subscribers,
        task_hooks=TaskHooks(bus, adapter=task_adapter, validator=contracts),
        retention=RetentionTask(event_store, config),
        analytics=OpsAnalytics(event_store),
    )
