# chainmail/block/transport/protocol.py
"""
ChainMail Block Transport: Message Protocol

Mail is an EmailSent log on the recipient's mail contract:

    EmailSent(from, to, mailHash, threadHash, threadId)

mailHash points at the encrypted message in the content store, threadHash at
the thread node after this message was appended, threadId is fixed for the
whole conversation. Folders are views over the log:

    inbox  = EmailSent where to   == local account
    outbox = EmailSent where from == local account

Cross-domain delivery writes into the foreign domain's contract with
sendExternalEmail, passing the local contract so replies can find their way
back.

Usage:
    protocol = MessageProtocol(ledger, gate, resolver, threads)

    await protocol.send(bob, mail_hash, thread_hash, protocol.new_thread_id())

    page = await protocol.fetch_page(Folder.INBOX)
    while page.has_more:
        page = await protocol.fetch_page(Folder.INBOX, until_block=page.next_until_block)

    listener = await protocol.listen(on_mail)
    ...
    listener.stop()
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import secrets
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Union

from ..contract import ContractGate
from ..events import Folder, MailPage, MessageEvent, normalize_address, uniq_by
from ..ledger import LedgerBackend, Subscription, TxReceipt
from ..registry.resolver import RoutingResolver
from ..storage import ThreadNode, ThreadStore
from ...config import DEFAULT_FETCH_WINDOW
from ...cryptography.common import to_hex
from ...errors import ResolutionError

logger = logging.getLogger("chainmail.protocol")

MailCallback = Callable[[MessageEvent, Folder], Union[None, Awaitable[None]]]


# =============================================================================
# Types
# =============================================================================

@dataclass
class ThreadView:
    """
    Latest state of a thread.

    Attributes:
        thread_id: Conversation id
        tail: Most recent EmailSent for the thread
        node: Thread node the tail points at
        mail_hashes: Message addresses, opening message first
    """
    thread_id: str
    tail: MessageEvent
    node: ThreadNode
    mail_hashes: List[str] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.mail_hashes)


class MailListener:
    """
    Live inbox + outbox delivery.

    Each folder has its own subscription and pump task; an error on one is
    logged and does not affect the other.
    """

    def __init__(self, on_event: MailCallback):
        self._on_event = on_event
        self._subscriptions: Dict[Folder, Subscription] = {}
        self._tasks: List[asyncio.Task] = []

    @property
    def active(self) -> bool:
        return any(sub.active for sub in self._subscriptions.values())

    def subscription(self, folder: Folder) -> Optional[Subscription]:
        return self._subscriptions.get(folder)

    def _attach(self, folder: Folder, sub: Subscription) -> None:
        self._subscriptions[folder] = sub
        self._tasks.append(asyncio.get_running_loop().create_task(self._pump(folder, sub)))

    async def _pump(self, folder: Folder, sub: Subscription) -> None:
        while sub.active:
            try:
                event = await sub.next()
            except StopAsyncIteration:
                break
            except Exception as e:
                logger.error(f"{folder.value} subscription error: {e}")
                continue

            try:
                result = self._on_event(event, folder)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"{folder.value} handler error: {e}")

    def stop(self) -> None:
        """Detach both subscriptions."""
        for sub in self._subscriptions.values():
            sub.stop()
        for task in self._tasks:
            if not task.done():
                task.cancel()


# =============================================================================
# MessageProtocol
# =============================================================================

class MessageProtocol:
    """Send, receive and page through mail on the ledger."""

    def __init__(
        self,
        ledger: LedgerBackend,
        gate: ContractGate,
        resolver: RoutingResolver,
        threads: Optional[ThreadStore] = None,
        fetch_window: int = DEFAULT_FETCH_WINDOW,
    ):
        """
        Args:
            ledger: Ledger capability
            gate: Holder of the local mail contract
            resolver: Cross-domain routing
            threads: Content store adapter (needed for load_thread)
            fetch_window: Default blocks per fetch_page window
        """
        self._ledger = ledger
        self._gate = gate
        self._resolver = resolver
        self._threads = threads
        self._fetch_window = fetch_window

    async def _account(self, account: Optional[str]) -> str:
        return account if account else await self._ledger.get_current_account()

    @staticmethod
    def new_thread_id() -> str:
        """Random 32-byte thread id."""
        return to_hex(secrets.token_bytes(32))

    # =========================================================================
    # Send
    # =========================================================================

    async def send(
        self,
        to_address: str,
        mail_hash: str,
        thread_hash: str,
        thread_id: str,
        domain: Optional[str] = None,
        is_external: bool = False,
        account: Optional[str] = None,
    ) -> TxReceipt:
        """
        Publish one message.

        External sends go to the contract resolved for `domain`, unless that
        turns out to be the local contract.

        Raises:
            AccountUnavailable: No active account
            ResolutionError: Domain could not be routed
            ChainWriteError: Transaction failed
        """
        sender = await self._account(account)
        local = await self._gate.contract()

        if is_external:
            if not domain:
                raise ResolutionError("External delivery needs a domain")
            target = await self._resolver.resolve_mail_contract(domain)
            if not target.same_address(local):
                logger.info(f"Sending to {to_address} via {domain} ({target.address})")
                return await target.send_external_email(
                    local.address, to_address, mail_hash, thread_hash, thread_id, sender,
                )
            logger.info(f"{domain} routes to the local contract, delivering locally")

        return await local.send_email(to_address, mail_hash, thread_hash, thread_id, sender)

    # =========================================================================
    # Live delivery
    # =========================================================================

    async def listen(self, on_event: MailCallback, account: Optional[str] = None) -> MailListener:
        """
        Deliver new inbox and outbox events to `on_event(event, folder)`.

        Starts at the block height at call time. `on_event` may be a plain
        function or a coroutine function.
        """
        address = await self._account(account)
        contract = await self._gate.contract()
        head = await self._ledger.get_block_height()

        listener = MailListener(on_event)
        for folder in (Folder.INBOX, Folder.OUTBOX):
            listener._attach(folder, contract.watch_email_sent(folder.filter_for(address), head))
        logger.info(f"Listening for mail to/from {address} from block {head}")
        return listener

    async def watch(self, folder: Folder, account: Optional[str] = None) -> Subscription:
        """Iterable stream of new MessageEvents for one folder."""
        address = await self._account(account)
        contract = await self._gate.contract()
        head = await self._ledger.get_block_height()
        return contract.watch_email_sent(folder.filter_for(address), head)

    # =========================================================================
    # Backfill
    # =========================================================================

    async def fetch_page(
        self,
        folder: Folder,
        until_block: Optional[int] = None,
        window_size: Optional[int] = None,
        account: Optional[str] = None,
    ) -> MailPage:
        """
        One window of a folder, newest first, one event per thread.

        The window covers blocks (until - window, until]; the last window
        also includes block 0. Pass page.next_until_block to continue.

        Raises:
            AccountUnavailable: No active account
            ChainReadError: Scan failed
        """
        window = self._fetch_window if window_size is None else window_size
        if window <= 0:
            raise ValueError("window_size must be positive")

        address = await self._account(account)
        contract = await self._gate.contract()
        until = await self._ledger.get_block_height() if until_block is None else until_block

        lower = until - window
        from_block = lower + 1 if lower > 0 else 0
        events = await contract.email_sent(folder.filter_for(address), from_block, until)

        newest_first = sorted(events, key=lambda e: e.position, reverse=True)
        return MailPage(
            events=uniq_by(newest_first, lambda e: normalize_address(e.thread_id)),
            next_until_block=max(lower, 0),
        )

    async def fetch_all(self, folder: Folder, account: Optional[str] = None) -> List[MessageEvent]:
        """
        Every event of a folder, one per correspondent (first occurrence).

        Raises:
            AccountUnavailable: No active account
            ChainReadError: Scan failed
        """
        address = await self._account(account)
        contract = await self._gate.contract()
        events = await contract.email_sent(folder.filter_for(address), 0)
        return uniq_by(events, lambda e: normalize_address(e.correspondent(folder)))

    # =========================================================================
    # Threads
    # =========================================================================

    async def fetch_thread_tail(self, thread_id: str, after_block: int = 0) -> Optional[MessageEvent]:
        """Most recent event of a thread, or None."""
        contract = await self._gate.contract()
        events = await contract.email_sent({"threadId": thread_id}, after_block)
        return events[-1] if events else None

    async def load_thread(self, thread_id: str, after_block: int = 0) -> Optional[ThreadView]:
        """
        Current thread: tail event plus the thread node it points at.

        Raises:
            ChainReadError: Scan failed
            ContentStoreError: Thread node unavailable
        """
        if self._threads is None:
            raise ValueError("MessageProtocol has no ThreadStore")

        tail = await self.fetch_thread_tail(thread_id, after_block)
        if tail is None:
            return None

        node = await self._threads.get_thread(tail.thread_hash)
        return ThreadView(thread_id=thread_id, tail=tail, node=node, mail_hashes=node.mail_hashes)
