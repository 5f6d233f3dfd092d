import os
import sys

import pytest

# Ensure the backend root (containing the `flowpath` package) is importable
_TESTS_DIR = os.path.dirname(__file__)
_BACKEND_ROOT = os.path.abspath(os.path.join(_TESTS_DIR, os.pardir))
if _BACKEND_ROOT not in sys.path:
    sys.path.insert(0, _BACKEND_ROOT)

# Tests always run on in-memory stores unless a test wires SQL explicitly
os.environ.pop("DATABASE_URL", None)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: Fast unit tests without I/O")


@pytest.fixture
def membership_service():
    from flowpath.core.stores import InMemoryMembershipStore
    from flowpath.services.membership_service import MembershipService

    return MembershipService(InMemoryMembershipStore())


@pytest.fixture
def flow_store():
    from flowpath.core.stores import InMemoryFlowStore

    return InMemoryFlowStore()


@pytest.fixture
def lifecycle(flow_store, membership_service):
    from flowpath.services.flow_lifecycle_service import FlowLifecycleService

    return FlowLifecycleService(flow_store, membership_service)


@pytest.fixture
def traversals(lifecycle):
    from flowpath.core.stores import InMemorySessionStore
    from flowpath.services.traversal_service import TraversalService

    return TraversalService(lifecycle, InMemorySessionStore())
