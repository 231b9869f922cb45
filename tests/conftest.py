from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from opstrail.core import context
from opstrail.core.config import Settings
from opstrail.core.contracts import ContractValidator
from opstrail.main import create_application
from opstrail.runtime import Runtime, build_runtime
from opstrail.services.events.recorder import EventRecorder
from opstrail.services.events.store import EventStore


@pytest.fixture(autouse=True)
def clean_context() -> Iterator[None]:
    context.reset()
    yield
    context.reset()


@pytest.fixture()
def config(tmp_path: Path) -> Settings:
    return Settings(_env_file=None, database_url=f"sqlite:///{tmp_path / 'events.db'}")


@pytest.fixture()
def store(config: Settings) -> EventStore:
    return EventStore(config.database_url, validator=ContractValidator())


@pytest.fixture()
def recorder(store: EventStore, config: Settings) -> EventRecorder:
    return EventRecorder(store, config)


@pytest.fixture()
def runtime(config: Settings) -> Runtime:
    return build_runtime(configuration=config)


@pytest.fixture()
def client(runtime: Runtime) -> Iterator[TestClient]:
    app = create_application(runtime=runtime)
    with TestClient(app) as test_client:
        yield test_client
