# chainmail/block/registry/identity.py
"""
ChainMail Block Registry: Identity Registry

Address-bound identities on the mail contract. A user signs the fixed login
string, derives an X25519 key pair from the signature, and publishes

    registerUser(keccak(username), seal(username, own public key), public key)

Nothing else is stored: signing in repeats the signature and re-derives the
same keys, which then open the encrypted username from the registration event.

Usage:
    registry = IdentityRegistry(ledger, gate, string_to_sign)

    signature = await registry.sign_string()
    registration = await registry.register("alice@chainmail.eth", signature)

    event = await registry.check_registration()
    session = await registry.sign_in(event.encrypted_username)

    record = await registry.resolve_public_key("bob@chainmail.eth")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from ..contract import ContractGate, MailContract
from ..events import RegistrationEvent
from ..ledger import LedgerBackend, TxReceipt
from ...config import DEFAULT_STRING_TO_SIGN
from ...cryptography.common import username_hash as hash_username
from ...cryptography.keys import KeyPair, derive_keys, seal, unseal
from ...errors import ChainReadError, NotRegistered, UserNotFound, UsernameTaken

logger = logging.getLogger("chainmail.identity")


# =============================================================================
# Types
# =============================================================================

@dataclass(frozen=True)
class Identity:
    """A registered user as published on the ledger."""
    username: str
    username_hash: str
    address: str
    public_key: str
    encrypted_username: str


@dataclass(frozen=True)
class Registration:
    """
    Result of register().

    Attributes:
        identity: The published identity
        keys: Derived key pair (session only)
        starting_block: Block height after registration; mail scans start here
        receipt: registerUser transaction
    """
    identity: Identity
    keys: KeyPair
    starting_block: int
    receipt: Optional[TxReceipt] = None


@dataclass(frozen=True)
class PublicKeyRecord:
    """Lookup result: where to deliver and how to encrypt."""
    address: str
    public_key: str
    used_contract: MailContract


@dataclass(frozen=True)
class SignIn:
    """Recovered session after signing the login string."""
    keys: KeyPair
    username: str
    address: str


# =============================================================================
# IdentityRegistry
# =============================================================================

class IdentityRegistry:
    """UserRegistered-backed identity lookup and registration."""

    def __init__(
        self,
        ledger: LedgerBackend,
        gate: ContractGate,
        string_to_sign: str = DEFAULT_STRING_TO_SIGN,
    ):
        """
        Args:
            ledger: Ledger capability
            gate: Holder of the local mail contract
            string_to_sign: Fixed login string
        """
        self._ledger = ledger
        self._gate = gate
        self._string_to_sign = string_to_sign

    async def _account(self, account: Optional[str]) -> str:
        return account if account else await self._ledger.get_current_account()

    async def sign_string(self, account: Optional[str] = None) -> str:
        """Signature over the login string; input to derive_keys()."""
        signer = await self._account(account)
        return await self._ledger.sign_message(signer, self._string_to_sign)

    # =========================================================================
    # Registration
    # =========================================================================

    async def register(
        self,
        username: str,
        signed_string: str,
        account: Optional[str] = None,
    ) -> Registration:
        """
        Publish an identity for `account`.

        Args:
            username: Full mail name (e.g. "alice@chainmail.eth")
            signed_string: Signature over the login string
            account: Registering account (default: active account)

        Returns:
            Registration

        Raises:
            AccountUnavailable: No active account
            ChainWriteError: Ledger rejected the registration
        """
        sender = await self._account(account)
        contract = await self._gate.contract()

        keys = derive_keys(signed_string)
        identity = Identity(
            username=username,
            username_hash=hash_username(username),
            address=sender,
            public_key=keys.public_key_hex,
            encrypted_username=seal(keys.public_key_hex, username),
        )

        receipt = await contract.register_user(
            identity.username_hash,
            identity.encrypted_username,
            identity.public_key,
            sender,
        )
        logger.info(f"Registered {username} for {sender} at block {receipt.block_number}")

        try:
            starting_block = await self._ledger.get_block_height()
        except ChainReadError as e:
            logger.warning(f"Block height unavailable after registration, starting at 0: {e}")
            starting_block = 0

        return Registration(
            identity=identity,
            keys=keys,
            starting_block=starting_block,
            receipt=receipt,
        )

    async def check_username_available(self, username: str) -> None:
        """
        Raises:
            UsernameTaken: If `username` is already registered
            ChainReadError: On scan failure
        """
        contract = await self._gate.contract()
        events = await contract.user_registered({"usernameHash": hash_username(username)}, 0)
        if events:
            raise UsernameTaken(username)

    async def check_registration(self, account: Optional[str] = None) -> RegistrationEvent:
        """
        First registration of `account`.

        Raises:
            AccountUnavailable: No active account
            NotRegistered: Account never registered
            ChainReadError: On scan failure
        """
        address = await self._account(account)
        contract = await self._gate.contract()
        events = await contract.user_registered({"addr": address}, 0)
        if not events:
            raise NotRegistered(address)
        return events[0]

    # =========================================================================
    # Lookup
    # =========================================================================

    async def resolve_public_key(
        self,
        username: str,
        contract: Optional[MailContract] = None,
    ) -> PublicKeyRecord:
        """
        Look up a user's address and public key.

        The earliest registration wins; later events for the same hash are
        ignored.

        Args:
            username: Full mail name
            contract: Contract to search (default: local)

        Raises:
            UserNotFound: No registration
            ChainReadError: On scan failure
        """
        used = contract if contract is not None else await self._gate.contract()
        events = await used.user_registered({"usernameHash": hash_username(username)}, 0)
        if not events:
            raise UserNotFound(username)

        first = events[0]
        return PublicKeyRecord(address=first.address, public_key=first.public_key, used_contract=used)

    async def get_address_info(self, address: str) -> List[RegistrationEvent]:
        """All registrations for `address` (empty when none)."""
        contract = await self._gate.contract()
        return await contract.user_registered({"addr": address}, 0)

    # =========================================================================
    # Sign-in
    # =========================================================================

    async def sign_in(
        self,
        encrypted_username: str,
        account: Optional[str] = None,
    ) -> SignIn:
        """
        Re-derive keys and recover the username.

        Raises:
            AccountUnavailable: No active account or signing refused
            DecryptionError: Keys do not open `encrypted_username`
        """
        address = await self._account(account)
        signature = await self._ledger.sign_message(address, self._string_to_sign)
        keys = derive_keys(signature)
        username = unseal(keys, encrypted_username).decode("utf-8")
        logger.info(f"Signed in {username} ({address})")
        return SignIn(keys=keys, username=username, address=address)
