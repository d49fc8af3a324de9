# tests/conftest.py
"""
Shared fixtures: an in-memory ledger, ENS and IPFS, plus a MailClient wired
to them. Nothing here touches a network.

Async code is driven with asyncio.run() inside each test; objects that hold
asyncio primitives are started inside that same run.
"""

import pytest

from chainmail.config import MailConfig
from chainmail.block.ledger import MockLedger
from chainmail.block.naming import MockNamingService
from chainmail.block.storage import MockContentStore
from chainmail.block.session import MailClient


ALICE = "0x" + "a1" * 20
BOB = "0x" + "b2" * 20
CAROL = "0x" + "c3" * 20

LOCAL_CONTRACT = "0x" + "11" * 20
FOREIGN_CONTRACT = "0x" + "22" * 20
FOREIGN_RESOLVER = "0x" + "33" * 20
LOOPBACK_RESOLVER = "0x" + "44" * 20
PLAIN_RESOLVER = "0x" + "55" * 20


@pytest.fixture
def addresses():
    return {
        "alice": ALICE,
        "bob": BOB,
        "carol": CAROL,
        "local_contract": LOCAL_CONTRACT,
        "foreign_contract": FOREIGN_CONTRACT,
        "foreign_resolver": FOREIGN_RESOLVER,
        "loopback_resolver": LOOPBACK_RESOLVER,
        "plain_resolver": PLAIN_RESOLVER,
    }


@pytest.fixture
def config():
    return MailConfig(
        contract_address=LOCAL_CONTRACT,
        network="mainnet",
        domain="chainmail.eth",
        fetch_window=50,
        ready_timeout=0.2,
        resolver_cache_ttl=60.0,
    )


@pytest.fixture
def ledger():
    return MockLedger(accounts=[ALICE, BOB, CAROL], chain_id=1)


@pytest.fixture
def naming():
    service = MockNamingService()
    # foreign domain served by another contract
    service.set_domain("other.eth", FOREIGN_RESOLVER, FOREIGN_CONTRACT)
    # domain whose MX record points back at the local contract
    service.set_domain("alias.eth", LOOPBACK_RESOLVER, LOCAL_CONTRACT)
    # resolver without MX support
    service.set_domain("nomx.eth", PLAIN_RESOLVER, FOREIGN_CONTRACT, supports_mx=False)
    return service


@pytest.fixture
def store():
    return MockContentStore()


@pytest.fixture
def client(config, ledger, naming, store):
    """Unstarted client; call `await client.start()` inside the test's loop."""
    return MailClient(config, ledger, naming, store)
