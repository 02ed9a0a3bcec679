"""Shared fakes for the oracle client and its event filters."""

import sys
import threading
from pathlib import Path

import pytest

ROOT = Path(__file__).parent.parent.resolve()
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from event_dispatcher import build_dispatcher  # noqa: E402
from services.oracles.exceptions import ContractNotConfiguredError  # noqa: E402

ACCOUNT = "0x90F8bf6A479f320ead074411a4B0e7944Ea8c9C1"


class FakeFilter:
    """Event filter returning queued batches; an Exception in the queue is raised."""

    def __init__(self, filter_id):
        self.filter_id = filter_id
        self.batches = []

    def push(self, *entries):
        self.batches.append(list(entries))

    def get_new_entries(self):
        if not self.batches:
            return []
        batch = self.batches.pop(0)
        if len(batch) == 1 and isinstance(batch[0], Exception):
            raise batch[0]
        return batch


class FakeClient:
    """Stands in for OracleClient: records sends, optionally fails or blocks them."""

    def __init__(self, account=ACCOUNT, account_error=None, available=("price", "qa", "chat")):
        self.account = account
        self.account_error = account_error
        self.available = set(available)
        self.sent = []
        self.send_error = None
        self.gate = None
        self.filters = {}
        self.uninstalled = []

    def resolve_account(self, index):
        if self.account_error:
            raise self.account_error
        return self.account

    def send(self, oracle_type, account, *args):
        if self.gate is not None:
            self.gate.wait(5)
        self.sent.append((oracle_type, account, args))
        if self.send_error:
            raise self.send_error
        return {"status": 1, "blockNumber": 1}

    def create_event_filter(self, oracle_type):
        if oracle_type not in self.available:
            raise ContractNotConfiguredError(f"{oracle_type} contract is not available")
        event_filter = FakeFilter(filter_id=f"0x{len(self.filters) + 1:x}")
        self.filters[oracle_type] = event_filter
        return event_filter

    def uninstall_filter(self, event_filter):
        self.uninstalled.append(event_filter.filter_id)
        return True


def answer_event(field, value, block=10, tx_hash="0xfeed"):
    return {"args": {field: value}, "blockNumber": block, "transactionHash": tx_hash}


@pytest.fixture
def client():
    fake = FakeClient()
    yield fake
    # Never leave a send thread parked on the gate
    if fake.gate is not None:
        fake.gate.set()


@pytest.fixture
def dispatcher(client):
    d = build_dispatcher(client, account_index=1, chat_endpoint="https://chat.example/ask", poll_interval=0.01)
    d.session.account = ACCOUNT
    return d


@pytest.fixture
def gate(client):
    client.gate = threading.Event()
    return client.gate
