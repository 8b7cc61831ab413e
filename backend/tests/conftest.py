"""
Pytest Configuration and Fixtures

Shared fixtures for all tests: an in-memory MongoDB (mongomock), a manual
clock and factories for configurations and requests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Generator

import mongomock
import pytest
from pymongo.database import Database

from approvalflow.domain.enums import ConfigurationStatus, RequestStatus
from approvalflow.domain.models import ActorContext, Request, WorkflowConfiguration
from approvalflow.repositories.configuration_repo import ConfigurationRepository
from approvalflow.repositories.mongo_client import use_database
from approvalflow.repositories.request_repo import RequestRepository
from approvalflow.utils.idgen import generate_configuration_id, generate_request_id
from approvalflow.utils.time import ManualClock

TENANT = "tenant-a"
START = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def db() -> Generator[Database, None, None]:
    """Fresh in-memory database, also installed as the application database"""
    client = mongomock.MongoClient()
    database = client["approvalflow_test"]
    use_database(database)
    yield database
    use_database(None)
    client.close()


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(START)


@pytest.fixture
def actor() -> ActorContext:
    return ActorContext(tenant_id=TENANT, user_id="admin")


@pytest.fixture
def make_configuration(db, clock) -> Callable[..., WorkflowConfiguration]:
    """Persist an active configuration; keyword overrides win"""
    repo = ConfigurationRepository(db)

    def _make(**overrides: Any) -> WorkflowConfiguration:
        now = clock.now()
        fields = {
            "configuration_id": generate_configuration_id(),
            "tenant_id": TENANT,
            "workflow_name": "Purchase approval",
            "request_type_id": "purchase",
            "status": ConfigurationStatus.ACTIVE,
            "is_active": True,
            "created_at": now,
            "created_by": "admin",
            "updated_at": now,
            "updated_by": "admin",
        }
        fields.update(overrides)
        return repo.create_configuration(WorkflowConfiguration(**fields))

    return _make


@pytest.fixture
def make_request(db, clock) -> Callable[..., Request]:
    """Persist a pending request due in three days; keyword overrides win"""
    repo = RequestRepository(db)

    def _make(**overrides: Any) -> Request:
        now = clock.now()
        fields = {
            "request_id": generate_request_id(),
            "tenant_id": TENANT,
            "request_type_id": "purchase",
            "requester_id": "alice",
            "title": "New laptop",
            "data": {"amount": 1200},
            "status": RequestStatus.PENDING,
            "due_date": now + timedelta(days=3),
            "created_at": now,
            "updated_at": now,
        }
        fields.update(overrides)
        return repo.create_request(Request(**fields))

    return _make
