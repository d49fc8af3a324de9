# chainmail/block/contract.py
"""
ChainMail Block: Mail Contract Handle

MailContract binds the ledger capability to one deployed mail contract
(the local one, or a foreign domain's contract found through ENS) and
exposes its methods and events in typed form.

ContractGate owns the single local handle. Its lifecycle is explicit:

    UNINITIALIZED ──mark_ready()──▶ READY ──bind(contract)──▶ BOUND

Every service awaits `gate.contract()` instead of reading a global, so an
operation issued before start-up finishes waits (up to a timeout) rather
than racing the initialization.
"""

from __future__ import annotations

import asyncio
from enum import Enum, auto
from typing import Any, Dict, List, Optional

from .events import (
    ContactsEvent,
    MessageEvent,
    RegistrationEvent,
    EVENT_CONTACTS_UPDATED,
    EVENT_EMAIL_SENT,
    EVENT_USER_REGISTERED,
)
from .ledger import LedgerBackend, Subscription, TxReceipt
from ..errors import ChainReadError


# =============================================================================
# MailContract
# =============================================================================

class MailContract:
    """Typed handle on a deployed mail contract."""

    def __init__(self, ledger: LedgerBackend, address: str, domain: Optional[str] = None):
        self._ledger = ledger
        self._address = address
        self.domain = domain

    @property
    def address(self) -> str:
        return self._address

    def same_address(self, other: Any) -> bool:
        """Compare with another handle or a plain address."""
        other_address = other.address if isinstance(other, MailContract) else other
        return bool(other_address) and other_address.lower() == self._address.lower()

    def __repr__(self) -> str:
        return f"MailContract({self._address}, domain={self.domain!r})"

    # =========================================================================
    # Write Operations
    # =========================================================================

    async def register_user(
        self,
        username_hash: str,
        encrypted_username: str,
        public_key: str,
        account: str,
    ) -> TxReceipt:
        return await self._ledger.submit_transaction(
            self._address, "registerUser",
            [username_hash, encrypted_username, public_key], account,
        )

    async def send_email(
        self,
        to: str,
        mail_hash: str,
        thread_hash: str,
        thread_id: str,
        account: str,
    ) -> TxReceipt:
        return await self._ledger.submit_transaction(
            self._address, "sendEmail",
            [to, mail_hash, thread_hash, thread_id], account,
        )

    async def send_external_email(
        self,
        origin_contract: str,
        to: str,
        mail_hash: str,
        thread_hash: str,
        thread_id: str,
        account: str,
    ) -> TxReceipt:
        """Deliver into this (foreign) contract; `origin_contract` routes replies back."""
        return await self._ledger.submit_transaction(
            self._address, "sendExternalEmail",
            [origin_contract, to, mail_hash, thread_hash, thread_id], account,
        )

    async def update_contacts(self, username_hash: str, ipfs_hash: str, account: str) -> TxReceipt:
        return await self._ledger.submit_transaction(
            self._address, "updateContacts", [username_hash, ipfs_hash], account,
        )

    # =========================================================================
    # Event Scans
    # =========================================================================

    async def user_registered(
        self,
        filter: Dict[str, Any],
        from_block: int = 0,
        to_block: Optional[int] = None,
    ) -> List[RegistrationEvent]:
        entries = await self._ledger.scan_events(
            self._address, EVENT_USER_REGISTERED, filter, from_block, to_block,
        )
        return [RegistrationEvent.from_log(e) for e in entries]

    async def email_sent(
        self,
        filter: Dict[str, Any],
        from_block: int = 0,
        to_block: Optional[int] = None,
    ) -> List[MessageEvent]:
        entries = await self._ledger.scan_events(
            self._address, EVENT_EMAIL_SENT, filter, from_block, to_block,
        )
        return [MessageEvent.from_log(e) for e in entries]

    async def contacts_updated(
        self,
        filter: Dict[str, Any],
        from_block: int = 0,
        to_block: Optional[int] = None,
    ) -> List[ContactsEvent]:
        entries = await self._ledger.scan_events(
            self._address, EVENT_CONTACTS_UPDATED, filter, from_block, to_block,
        )
        return [ContactsEvent.from_log(e) for e in entries]

    def watch_email_sent(self, filter: Dict[str, Any], from_block: int) -> Subscription:
        """Live EmailSent stream as MessageEvents."""
        sub = self._ledger.subscribe_events(self._address, EVENT_EMAIL_SENT, filter, from_block)
        return sub.map(MessageEvent.from_log)


# =============================================================================
# ContractGate
# =============================================================================

class GateState(Enum):
    """Local contract lifecycle."""
    UNINITIALIZED = auto()
    READY = auto()
    BOUND = auto()


class ContractGate:
    """Awaitable holder of the local MailContract."""

    def __init__(self, timeout: float = 30.0):
        """
        Args:
            timeout: Seconds contract() waits for the binding
        """
        self._timeout = timeout
        self._state = GateState.UNINITIALIZED
        self._contract: Optional[MailContract] = None
        self._bound = asyncio.Event()

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def is_bound(self) -> bool:
        return self._state is GateState.BOUND

    def mark_ready(self) -> None:
        """The ledger connection is usable."""
        if self._state is GateState.UNINITIALIZED:
            self._state = GateState.READY

    def bind(self, contract: MailContract) -> None:
        """
        Bind the local contract. Allowed once, after mark_ready().

        Raises:
            RuntimeError: On bind before ready, or rebinding elsewhere
        """
        if self._state is GateState.UNINITIALIZED:
            raise RuntimeError("Cannot bind mail contract before the ledger is ready")
        if self._state is GateState.BOUND:
            if contract.same_address(self._contract):
                return
            raise RuntimeError(f"Mail contract already bound to {self._contract.address}")
        self._contract = contract
        self._state = GateState.BOUND
        self._bound.set()

    async def wait(self, timeout: Optional[float] = None) -> MailContract:
        """
        Wait for the binding.

        Args:
            timeout: Seconds to wait (default: the gate's timeout)

        Raises:
            ChainReadError: If nothing is bound within the timeout
        """
        if self._contract is not None:
            return self._contract
        timeout = self._timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(self._bound.wait(), timeout)
        except asyncio.TimeoutError:
            raise ChainReadError(
                f"Mail contract not bound after {timeout}s (state={self._state.name})"
            )
        return self._contract

    async def contract(self) -> MailContract:
        """The bound local contract."""
        return await self.wait()

    @classmethod
    def bound_to(cls, contract: MailContract, timeout: float = 30.0) -> ContractGate:
        """A gate already in BOUND state."""
        gate = cls(timeout=timeout)
        gate.mark_ready()
        gate.bind(contract)
        return gate
