# chainmail/block/__init__.py
"""
ChainMail Block: Ledger Integration Layer

Mail, identities and contact lists anchored in an EVM chain, with payloads
in IPFS and cross-domain routing through ENS.

Submodules:
    ledger.py    - Ledger capability
                   - Web3Ledger: web3.py AsyncWeb3 + eth-account signing
                   - MockLedger: In-memory log for tests
    naming.py    - ENS capability (resolver, supportsInterface, mx)
    storage.py   - Content store capability + ThreadStore adapter
    contract.py  - MailContract handle, ContractGate lifecycle
    registry/    - IdentityRegistry, RoutingResolver
    transport/   - MessageProtocol, ContactDirectory
    session.py   - MailClient composition root

Quick Start:
    from chainmail.block import MailClient, Folder

    client = await MailClient.from_config(config, private_key=key).start()
    session = await client.sign_in()

    page = await client.protocol.fetch_page(Folder.INBOX)
    for event in page.events:
        thread = await client.protocol.load_thread(event.thread_id)
        mail = await client.read_mail(thread.mail_hashes[-1], session.keys)
"""

# =============================================================================
# Events
# =============================================================================
from .events import (
    Folder,
    LogEntry,
    MessageEvent,
    RegistrationEvent,
    ContactsEvent,
    MailPage,
    uniq_by,
)

# =============================================================================
# Capabilities
# =============================================================================
from .ledger import (
    LedgerBackend,
    Web3Ledger,
    MockLedger,
    Subscription,
    TxReceipt,
)

from .naming import (
    NamingService,
    Web3NamingService,
    MockNamingService,
    ENS_MX_INTERFACE_ID,
)

from .storage import (
    ContentStore,
    IPFSContentStore,
    MockContentStore,
    ThreadStore,
    ThreadNode,
    ContentRef,
    Link,
    IPFS_AVAILABLE,
)

# =============================================================================
# Contract
# =============================================================================
from .contract import (
    MailContract,
    ContractGate,
    GateState,
)

# =============================================================================
# Services
# =============================================================================
from .registry import (
    IdentityRegistry,
    Identity,
    Registration,
    PublicKeyRecord,
    SignIn,
    RoutingResolver,
)

from .transport import (
    MessageProtocol,
    MailListener,
    ThreadView,
    ContactDirectory,
)

from .session import MailClient

# =============================================================================
# Public API
# =============================================================================
__all__ = [
    # === Events ===
    "Folder",
    "LogEntry",
    "MessageEvent",
    "RegistrationEvent",
    "ContactsEvent",
    "MailPage",
    "uniq_by",

    # === Ledger ===
    "LedgerBackend",
    "Web3Ledger",
    "MockLedger",
    "Subscription",
    "TxReceipt",

    # === Naming ===
    "NamingService",
    "Web3NamingService",
    "MockNamingService",
    "ENS_MX_INTERFACE_ID",

    # === Storage ===
    "ContentStore",
    "IPFSContentStore",
    "MockContentStore",
    "ThreadStore",
    "ThreadNode",
    "ContentRef",
    "Link",
    "IPFS_AVAILABLE",

    # === Contract ===
    "MailContract",
    "ContractGate",
    "GateState",

    # === Registry ===
    "IdentityRegistry",
    "Identity",
    "Registration",
    "PublicKeyRecord",
    "SignIn",
    "RoutingResolver",

    # === Transport ===
    "MessageProtocol",
    "MailListener",
    "ThreadView",
    "ContactDirectory",

    # === Session ===
    "MailClient",
]
