from __future__ import annotations

import random

import pytest

from data.retry_policy import RetryPolicy
from data.schema_registry import default_registry
from data.sheets_client import SheetsClient
from data.sheets_repository import SheetsRepository
from tests.fakes import FIXED_NOW, FakeSpreadsheet


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def retry_policy(sleeps) -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=0.5, max_delay=8.0, jitter=0.1,
                       sleep=sleeps.append, rng=random.Random(7))


@pytest.fixture
def spreadsheet() -> FakeSpreadsheet:
    registry = default_registry()
    return FakeSpreadsheet({schema.name: [schema.headers] for schema in registry})


@pytest.fixture
def client(spreadsheet, retry_policy) -> SheetsClient:
    return SheetsClient(spreadsheet, retry_policy)


@pytest.fixture
def repo(client) -> SheetsRepository:
    return SheetsRepository(client, clock=lambda: FIXED_NOW)
