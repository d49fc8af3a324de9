# chainmail/block/session.py
"""
ChainMail Block: Mail Client

Composition root. Wires one ledger, one naming service and one content store
into the registry and transport services, and owns the local contract gate.

    MailClient
    ├── identity   IdentityRegistry
    ├── resolver   RoutingResolver
    ├── protocol   MessageProtocol
    ├── contacts   ContactDirectory
    └── threads    ThreadStore

Usage:
    config = load_config("config.json")
    async with MailClient.from_config(config, private_key=key) as client:
        session = await client.sign_in()
        record = await client.resolve_user("bob@other.eth")
        await client.send_mail(record, "bob@other.eth", {"subject": "hi"}, session.keys)
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional

from web3 import Web3

from .contract import ContractGate, MailContract
from .ledger import LedgerBackend, TxReceipt, Web3Ledger
from .naming import NamingService, Web3NamingService
from .registry.identity import IdentityRegistry, PublicKeyRecord, SignIn
from .registry.resolver import RoutingResolver
from .storage import ContentStore, IPFSContentStore, ThreadStore
from .transport.contacts import ContactDirectory
from .transport.protocol import MessageProtocol, ThreadView
from ..config import NETWORKS, MailConfig
from ..cryptography.keys import KeyPair, seal, unseal
from ..errors import DecryptionError, WrongNetwork

logger = logging.getLogger("chainmail.session")


def domain_of(username: str) -> Optional[str]:
    """Domain part of "user@domain", or None."""
    if "@" not in username:
        return None
    return username.rpartition("@")[2] or None


class MailClient:
    """One user's connection to ChainMail."""

    def __init__(
        self,
        config: MailConfig,
        ledger: LedgerBackend,
        naming: NamingService,
        store: ContentStore,
    ):
        self.config = config
        self.ledger = ledger
        self.naming = naming
        self.store = store

        self.gate = ContractGate(timeout=config.ready_timeout)
        self.threads = ThreadStore(store)
        self.identity = IdentityRegistry(ledger, self.gate, config.string_to_sign)
        self.resolver = RoutingResolver(
            naming, ledger,
            local_domain=config.domain,
            cache_ttl=config.resolver_cache_ttl,
        )
        self.protocol = MessageProtocol(
            ledger, self.gate, self.resolver, self.threads,
            fetch_window=config.fetch_window,
        )
        self.contacts = ContactDirectory(ledger, self.gate, self.threads)

    @classmethod
    def from_config(
        cls,
        config: MailConfig,
        ledger: Optional[LedgerBackend] = None,
        naming: Optional[NamingService] = None,
        store: Optional[ContentStore] = None,
        private_key: Optional[str] = None,
    ) -> MailClient:
        """
        Build a client, creating real backends for anything not given.

        Args:
            config: Runtime configuration
            ledger: Ledger capability (default: Web3Ledger on config.rpc_url)
            naming: Naming service (default: ENS through the Web3Ledger)
            store: Content store (default: IPFS on config.ipfs_api_addr)
            private_key: Local signing key for the default Web3Ledger
        """
        if ledger is None:
            ledger = Web3Ledger(
                rpc_url=config.rpc_url,
                private_key=private_key,
                poll_interval=config.poll_interval,
            )
        if naming is None:
            if not isinstance(ledger, Web3Ledger):
                raise ValueError("naming service required when the ledger is not a Web3Ledger")
            naming = Web3NamingService(ledger.w3, config.ens_registry_address)
        if store is None:
            store = IPFSContentStore(config.ipfs_api_addr)
        return cls(config, ledger, naming, store)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def check_network(self) -> str:
        """
        Name of the connected network.

        Raises:
            WrongNetwork: It is not the configured one
            ChainReadError: Chain id unavailable
        """
        chain_id = await self.ledger.get_chain_id()
        name = NETWORKS.get(chain_id)
        if name != self.config.network:
            raise WrongNetwork(self.config.network, name)
        return name

    async def start(self) -> MailClient:
        """Check the network and bind the local contract."""
        network = await self.check_network()
        self.gate.mark_ready()
        self.gate.bind(MailContract(self.ledger, self.config.contract_address, domain=self.config.domain))
        logger.info(f"Connected to {network}, mail contract {self.config.contract_address}")
        return self

    async def close(self) -> None:
        await self.ledger.close()
        close = getattr(self.store, "close", None)
        if close is not None:
            close()

    async def __aenter__(self) -> MailClient:
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # =========================================================================
    # Account
    # =========================================================================

    async def get_balance(self, account: Optional[str] = None) -> float:
        """Balance in ether."""
        address = account if account else await self.ledger.get_current_account()
        wei = await self.ledger.get_balance(address)
        return float(Web3.from_wei(wei, "ether"))

    async def sign_in(self, account: Optional[str] = None) -> SignIn:
        """
        Sign in the active account.

        Raises:
            AccountUnavailable: No active account
            NotRegistered: Account never registered
            DecryptionError: Signature does not match the registration
        """
        address = account if account else await self.ledger.get_current_account()
        registration = await self.identity.check_registration(address)
        return await self.identity.sign_in(registration.encrypted_username, address)

    # =========================================================================
    # Recipients
    # =========================================================================

    async def resolve_user(self, username: str, domain: Optional[str] = None) -> PublicKeyRecord:
        """
        Address and public key of a recipient, wherever it is registered.

        `domain` defaults to the part after "@". A foreign domain whose MX
        record points back at the local contract is looked up locally.

        Raises:
            UserNotFound: Not registered on the resolved contract
            ResolutionError: Foreign domain could not be routed
        """
        domain = domain or domain_of(username)
        if not self.resolver.is_external(domain):
            return await self.identity.resolve_public_key(username)

        contract = await self.resolver.resolve_mail_contract(domain)
        local = await self.gate.contract()
        if contract.same_address(local):
            return await self.identity.resolve_public_key(username)
        return await self.identity.resolve_public_key(username, contract)

    # =========================================================================
    # Mail
    # =========================================================================

    async def send_mail(
        self,
        recipient: PublicKeyRecord,
        recipient_name: str,
        body: Dict[str, Any],
        keys: KeyPair,
        thread: Optional[ThreadView] = None,
        account: Optional[str] = None,
    ) -> TxReceipt:
        """
        Seal, upload and publish one message.

        The body is sealed twice: for the recipient and for the sender's own
        outbox. Without `thread` a new thread is started.

        Raises:
            InvalidPublicKey: Recipient's published key is unusable
            ContentStoreError: Upload failed
            ChainWriteError: Transaction failed
        """
        plaintext = json.dumps(body)
        ref = await self.threads.upload_data({
            "toData": seal(recipient.public_key, plaintext),
            "fromData": seal(keys.public_key_hex, plaintext),
        })

        if thread is None:
            thread_id = self.protocol.new_thread_id()
            thread_hash = await self.threads.new_thread(ref)
        else:
            thread_id = thread.thread_id
            thread_hash = await self.threads.reply_to_thread(ref, thread.tail.thread_hash)

        domain = domain_of(recipient_name)
        return await self.protocol.send(
            recipient.address, ref.hash, thread_hash, thread_id,
            domain=domain,
            is_external=self.resolver.is_external(domain),
            account=account,
        )

    async def read_mail(self, mail_hash: str, keys: KeyPair) -> Dict[str, Any]:
        """
        Open a message addressed to or sent by `keys`.

        Raises:
            ContentStoreError: Message unavailable
            DecryptionError: Neither copy opens with `keys`
        """
        payload = await self.threads.get_json(mail_hash)
        for side in ("toData", "fromData"):
            sealed = payload.get(side) if isinstance(payload, dict) else None
            if not sealed:
                continue
            try:
                return json.loads(unseal(keys, sealed).decode("utf-8"))
            except DecryptionError:
                continue
        raise DecryptionError(f"Message {mail_hash} is not readable with these keys")
