"""
Pytest configuration for the campaign assignment tests.

This file adds the parent directory to the Python path so that tests
can import from the domain, repositories, services, clients and api modules,
and provides the in-memory collaborators most tests share.
"""

import sys
from pathlib import Path

import pytest

# Add the project root to the Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from fakes import (  # noqa: E402
    FakeBlocklistStore,
    FakeCampaign,
    FakeCandidateStore,
    FakeContacts,
)
from repositories.memory import InMemoryAssignmentLog, InMemoryBatchStore  # noqa: E402
from services.batch_ledger import BatchLedger  # noqa: E402
from services.candidate_selector import CandidateSelector  # noqa: E402


@pytest.fixture
def candidate_store() -> FakeCandidateStore:
    return FakeCandidateStore()


@pytest.fixture
def blocklist_store() -> FakeBlocklistStore:
    return FakeBlocklistStore()


@pytest.fixture
def selector(candidate_store: FakeCandidateStore, blocklist_store: FakeBlocklistStore) -> CandidateSelector:
    return CandidateSelector(candidates=candidate_store, blocklist=blocklist_store)


@pytest.fixture
def batch_store() -> InMemoryBatchStore:
    return InMemoryBatchStore()


@pytest.fixture
def ledger(batch_store: InMemoryBatchStore) -> BatchLedger:
    return BatchLedger(batch_store)


@pytest.fixture
def log_store() -> InMemoryAssignmentLog:
    return InMemoryAssignmentLog()


@pytest.fixture
def contacts(candidate_store: FakeCandidateStore) -> FakeContacts:
    return FakeContacts(candidate_store)


@pytest.fixture
def campaign() -> FakeCampaign:
    return FakeCampaign()
