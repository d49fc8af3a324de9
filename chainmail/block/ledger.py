# chainmail/block/ledger.py
"""
ChainMail Block: Ledger Capability

The append-only event log the mail protocol is built on. The core never
talks to web3 directly; it consumes this capability:

    get_current_account()                         -> address
    get_block_height()                            -> int
    sign_message(account, message)                -> signature
    submit_transaction(contract, method, args, from_account) -> TxReceipt
    scan_events(contract, event, filter, from_block, to_block) -> [LogEntry]
    subscribe_events(contract, event, filter, from_block)      -> Subscription

Implementations:
    Web3Ledger: web3.py AsyncWeb3 over JSON-RPC. Signs locally with an
                eth-account key when one is given, otherwise uses the
                node's unlocked accounts.
    MockLedger: In-memory log with mail-contract semantics (for testing
                without a chain).

Usage:
    ledger = Web3Ledger(rpc_url="http://127.0.0.1:8545", private_key="0x...")
    account = await ledger.get_current_account()
    entries = await ledger.scan_events(contract, "EmailSent", {"to": account}, 0, None)

    sub = ledger.subscribe_events(contract, "EmailSent", {"to": account}, head)
    async for entry in sub:
        ...
    sub.stop()
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence

from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import AsyncWeb3, AsyncHTTPProvider

from .contracts import MAIL_CONTRACT_ABI
from .events import (
    LogEntry,
    EVENT_CONTACTS_UPDATED,
    EVENT_EMAIL_SENT,
    EVENT_USER_REGISTERED,
)
from ..cryptography.common import _sha256, to_hex
from ..errors import AccountUnavailable, ChainReadError, ChainWriteError

logger = logging.getLogger("chainmail.ledger")


# =============================================================================
# Types
# =============================================================================

@dataclass(frozen=True)
class TxReceipt:
    """Result of a mined transaction."""
    transaction_hash: str
    block_number: int
    method: str = ""
    status: int = 1


class _Stop:
    """Queue sentinel."""
    pass


_STOP = _Stop()


class Subscription:
    """
    Cancellable stream of ledger logs.

    Producers call push()/fail(); consumers iterate (`async for`) or call
    next(). A pushed error is raised from exactly one next() call and the
    stream stays open afterwards. stop() detaches the consumer; entries
    already returned are unaffected.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue()
        self._stopped = False
        self._task: Optional[asyncio.Task] = None
        self._on_stop: List[Callable[[], None]] = []

    @property
    def active(self) -> bool:
        """True until stop() is called."""
        return not self._stopped

    # -------------------------------------------------------------------------
    # Producer side
    # -------------------------------------------------------------------------

    def attach(self, task: asyncio.Task) -> None:
        """Tie a producer task to this subscription's lifetime."""
        self._task = task

    def add_stop_callback(self, callback: Callable[[], None]) -> None:
        self._on_stop.append(callback)

    def push(self, item: Any) -> None:
        if not self._stopped:
            self._queue.put_nowait(item)

    def fail(self, error: Exception) -> None:
        if not self._stopped:
            self._queue.put_nowait(error)

    # -------------------------------------------------------------------------
    # Consumer side
    # -------------------------------------------------------------------------

    async def next(self) -> Any:
        """
        Wait for the next entry.

        Raises:
            StopAsyncIteration: After stop()
            ChainReadError: If the producer reported a failure
        """
        if self._stopped:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _STOP or self._stopped:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> Any:
        return await self.next()

    def map(self, fn: Callable[[Any], Any]) -> Subscription:
        """View of this subscription with `fn` applied to every entry."""
        return _MappedSubscription(self, fn)

    def stop(self) -> None:
        """Detach the consumer and stop the producer."""
        if self._stopped:
            return
        self._stopped = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._queue.put_nowait(_STOP)
        for callback in self._on_stop:
            callback()


class _MappedSubscription(Subscription):
    """Subscription view transforming each entry."""

    def __init__(self, source: Subscription, fn: Callable[[Any], Any]):
        super().__init__(source.name)
        self._source = source
        self._fn = fn

    @property
    def active(self) -> bool:
        return self._source.active

    async def next(self) -> Any:
        """
        Raises:
            ChainReadError: If `fn` rejects an entry; the stream stays open
        """
        entry = await self._source.next()
        try:
            return self._fn(entry)
        except Exception as e:
            raise ChainReadError(f"Malformed entry on {self.name}: {e!r}") from e

    def stop(self) -> None:
        self._source.stop()


# =============================================================================
# Capability Interface
# =============================================================================

class LedgerBackend(ABC):
    """Abstract ledger capability."""

    @abstractmethod
    async def get_accounts(self) -> List[str]:
        """Available accounts, active one first."""
        pass

    async def get_current_account(self) -> str:
        """
        Active signing account.

        Raises:
            AccountUnavailable: If there is none
        """
        accounts = await self.get_accounts()
        if not accounts:
            raise AccountUnavailable()
        return accounts[0]

    @abstractmethod
    async def get_chain_id(self) -> int:
        pass

    @abstractmethod
    async def get_block_height(self) -> int:
        pass

    @abstractmethod
    async def get_balance(self, account: str) -> int:
        """Balance in wei."""
        pass

    @abstractmethod
    async def sign_message(self, account: str, message: str) -> str:
        """personal_sign over `message`; returns 0x-hex signature."""
        pass

    @abstractmethod
    async def submit_transaction(
        self,
        contract_address: str,
        method: str,
        args: Sequence[Any],
        from_account: str,
    ) -> TxReceipt:
        pass

    @abstractmethod
    async def scan_events(
        self,
        contract_address: str,
        event_name: str,
        filter: Dict[str, Any],
        from_block: int,
        to_block: Optional[int] = None,
    ) -> List[LogEntry]:
        """Logs in [from_block, to_block] (None = head), in ledger order."""
        pass

    @abstractmethod
    def subscribe_events(
        self,
        contract_address: str,
        event_name: str,
        filter: Dict[str, Any],
        from_block: int,
    ) -> Subscription:
        """Live logs from `from_block` on; must be called inside a running loop."""
        pass

    async def close(self) -> None:
        pass


# =============================================================================
# Web3 Ledger
# =============================================================================

def _normalize_arg(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return to_hex(value)
    return value


def _log_to_entry(log: Any) -> LogEntry:
    return LogEntry(
        event=log["event"],
        args={k: _normalize_arg(v) for k, v in dict(log["args"]).items()},
        block_number=log["blockNumber"],
        log_index=log["logIndex"],
        transaction_hash=to_hex(log["transactionHash"]),
        address=log["address"],
    )


def _is_address(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("0x") and len(value) == 42


def _checksum_args(args: Sequence[Any]) -> List[Any]:
    """web3 only accepts checksummed addresses as contract arguments."""
    return [AsyncWeb3.to_checksum_address(a) if _is_address(a) else a for a in args]


class Web3Ledger(LedgerBackend):
    """
    Ledger capability over web3.py.

    Writes are signed locally when `private_key` is given; otherwise the
    node's first unlocked account is used.
    """

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        private_key: Optional[str] = None,
        w3: Optional[AsyncWeb3] = None,
        poll_interval: float = 2.0,
        abi: Optional[List[Dict]] = None,
    ):
        """
        Initialize Web3Ledger.

        Args:
            rpc_url: RPC endpoint URL (ignored when `w3` is given)
            private_key: Key for local signing (optional)
            w3: Pre-built AsyncWeb3 instance (optional)
            poll_interval: Seconds between log polls for subscriptions
            abi: Mail contract ABI (defaults to the bundled one)
        """
        if w3 is None and rpc_url is None:
            raise ValueError("rpc_url or w3 is required")

        self._w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._abi = abi or MAIL_CONTRACT_ABI
        self._poll_interval = poll_interval
        self._contracts: Dict[str, Any] = {}

        self._account = None
        if private_key:
            self._account = Account.from_key(private_key)

    @property
    def w3(self) -> AsyncWeb3:
        return self._w3

    def _contract(self, address: str) -> Any:
        key = address.lower()
        if key not in self._contracts:
            self._contracts[key] = self._w3.eth.contract(
                address=AsyncWeb3.to_checksum_address(address),
                abi=self._abi,
            )
        return self._contracts[key]

    # =========================================================================
    # Accounts / chain
    # =========================================================================

    async def get_accounts(self) -> List[str]:
        if self._account:
            return [self._account.address]
        try:
            return list(await self._w3.eth.accounts)
        except Exception as e:
            raise ChainReadError(f"Failed to get accounts: {e}") from e

    async def get_chain_id(self) -> int:
        try:
            return await self._w3.eth.chain_id
        except Exception as e:
            raise ChainReadError(f"Failed to get chain id: {e}") from e

    async def get_block_height(self) -> int:
        try:
            return await self._w3.eth.block_number
        except Exception as e:
            raise ChainReadError(f"Failed to get block number: {e}") from e

    async def get_balance(self, account: str) -> int:
        try:
            return await self._w3.eth.get_balance(AsyncWeb3.to_checksum_address(account))
        except Exception as e:
            raise ChainReadError(f"Failed to get balance: {e}") from e

    async def sign_message(self, account: str, message: str) -> str:
        try:
            if self._account and account.lower() == self._account.address.lower():
                signed = Account.sign_message(encode_defunct(text=message), private_key=self._account.key)
                return to_hex(signed.signature)
            signature = await self._w3.eth.sign(AsyncWeb3.to_checksum_address(account), text=message)
            return to_hex(signature)
        except Exception as e:
            raise AccountUnavailable(f"Failed to sign with {account}: {e}") from e

    # =========================================================================
    # Write Operations
    # =========================================================================

    async def submit_transaction(
        self,
        contract_address: str,
        method: str,
        args: Sequence[Any],
        from_account: str,
    ) -> TxReceipt:
        try:
            sender = AsyncWeb3.to_checksum_address(from_account)
            call = getattr(self._contract(contract_address).functions, method)(*_checksum_args(args))
            tx_hash = await self._send(call, sender)
            receipt = await self._w3.eth.wait_for_transaction_receipt(tx_hash)
        except Exception as e:
            raise ChainWriteError(f"{method} failed: {e}") from e

        if receipt['status'] != 1:
            raise ChainWriteError(f"Transaction failed: {to_hex(tx_hash)}")

        return TxReceipt(
            transaction_hash=to_hex(tx_hash),
            block_number=receipt['blockNumber'],
            method=method,
            status=receipt['status'],
        )

    async def _send(self, call: Any, sender: str) -> bytes:
        """Sign locally when a key is loaded, else let the node sign."""
        if self._account:
            tx = await call.build_transaction({
                'from': sender,
                'chainId': await self._w3.eth.chain_id,
                'nonce': await self._w3.eth.get_transaction_count(sender),
            })
            signed = self._account.sign_transaction(tx)
            return await self._w3.eth.send_raw_transaction(signed.raw_transaction)
        return await call.transact({'from': sender})

    # =========================================================================
    # Read Operations
    # =========================================================================

    async def scan_events(
        self,
        contract_address: str,
        event_name: str,
        filter: Dict[str, Any],
        from_block: int,
        to_block: Optional[int] = None,
    ) -> List[LogEntry]:
        argument_filters = {
            k: AsyncWeb3.to_checksum_address(v) if _is_address(v) else v
            for k, v in filter.items()
        }
        event = getattr(self._contract(contract_address).events, event_name)()

        try:
            logs = await event.get_logs(
                argument_filters=argument_filters,
                from_block=max(from_block, 0),
                to_block='latest' if to_block is None else to_block,
            )
            entries = [_log_to_entry(log) for log in logs]
        except Exception as e:
            raise ChainReadError(f"Failed to scan {event_name}: {e}") from e

        entries.sort(key=lambda e: e.position)
        return entries

    def subscribe_events(
        self,
        contract_address: str,
        event_name: str,
        filter: Dict[str, Any],
        from_block: int,
    ) -> Subscription:
        sub = Subscription(name=f"{event_name}{filter}")
        task = asyncio.get_running_loop().create_task(
            self._poll(sub, contract_address, event_name, filter, from_block)
        )
        sub.attach(task)
        return sub

    async def _poll(
        self,
        sub: Subscription,
        contract_address: str,
        event_name: str,
        filter: Dict[str, Any],
        from_block: int,
    ) -> None:
        next_block = from_block
        while sub.active:
            try:
                head = await self.get_block_height()
                if head >= next_block:
                    for entry in await self.scan_events(
                        contract_address, event_name, filter, next_block, head
                    ):
                        sub.push(entry)
                    next_block = head + 1
            except Exception as e:
                logger.error(f"Subscription {sub.name} poll failed: {e}")
                sub.fail(e if isinstance(e, ChainReadError) else ChainReadError(f"Poll failed: {e}"))
            await asyncio.sleep(self._poll_interval)

    async def close(self) -> None:
        provider = self._w3.provider
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()


# =============================================================================
# Mock Ledger (for testing without blockchain)
# =============================================================================

@dataclass
class _Watch:
    """Active subscription registered on the mock ledger."""
    subscription: Subscription
    contract_address: str
    event_name: str
    filter: Dict[str, Any]
    from_block: int


def _matches(args: Dict[str, Any], filter: Dict[str, Any]) -> bool:
    for key, expected in filter.items():
        actual = args.get(key)
        if isinstance(expected, str) and isinstance(actual, str):
            if actual.lower() != expected.lower():
                return False
        elif actual != expected:
            return False
    return True


class MockLedger(LedgerBackend):
    """
    In-memory ledger for testing.

    Every submitted transaction is mined into its own block and emits the
    event the mail contract would emit. Failure flags simulate RPC errors.
    """

    def __init__(
        self,
        accounts: Optional[List[str]] = None,
        chain_id: int = 1,
        start_block: int = 0,
    ):
        self._accounts = list(accounts) if accounts is not None else ["0x" + "1" * 40]
        self._chain_id = chain_id
        self._block = start_block
        self._next_log_index = 0
        self._logs: Dict[str, List[LogEntry]] = {}
        self._registered: Dict[str, set] = {}
        self._balances: Dict[str, int] = {}
        self._watches: List[_Watch] = []
        self._tx_counter = 0

        self.transactions: List[Dict[str, Any]] = []
        self.fail_reads = False
        self.fail_writes = False
        self.fail_block_height = False

    # -------------------------------------------------------------------------
    # Test controls
    # -------------------------------------------------------------------------

    def set_accounts(self, accounts: List[str]) -> None:
        self._accounts = list(accounts)

    def set_account(self, address: str) -> None:
        """Make `address` the active account."""
        self._accounts = [address] + [a for a in self._accounts if a != address]

    def set_balance(self, address: str, wei: int) -> None:
        self._balances[address.lower()] = wei

    @property
    def block_number(self) -> int:
        return self._block

    def mine(self, blocks: int = 1) -> int:
        """Advance the head."""
        self._block += blocks
        self._next_log_index = 0
        return self._block

    def emit(
        self,
        contract_address: str,
        event_name: str,
        args: Dict[str, Any],
        block_number: Optional[int] = None,
    ) -> LogEntry:
        """Append a log directly (at `block_number`, default head)."""
        target = self._block if block_number is None else block_number
        if target > self._block:
            self._block = target
            self._next_log_index = 0

        if target == self._block:
            log_index = self._next_log_index
            self._next_log_index += 1
        else:
            # backdated log, appended after whatever that block already holds
            log_index = sum(
                1 for logs in self._logs.values() for e in logs if e.block_number == target
            )

        self._tx_counter += 1
        entry = LogEntry(
            event=event_name,
            args=dict(args),
            block_number=target,
            log_index=log_index,
            transaction_hash=to_hex(_sha256(f"mock-tx-{self._tx_counter}".encode())),
            address=contract_address,
        )

        logs = self._logs.setdefault(contract_address.lower(), [])
        logs.append(entry)
        logs.sort(key=lambda e: e.position)

        for watch in list(self._watches):
            if (
                watch.contract_address.lower() == contract_address.lower()
                and watch.event_name == event_name
                and entry.block_number >= watch.from_block
                and _matches(entry.args, watch.filter)
            ):
                watch.subscription.push(entry)

        return entry

    def watches(self, event_name: Optional[str] = None) -> List[_Watch]:
        """Active subscriptions, optionally for one event."""
        return [w for w in self._watches if event_name is None or w.event_name == event_name]

    # -------------------------------------------------------------------------
    # Capability
    # -------------------------------------------------------------------------

    async def get_accounts(self) -> List[str]:
        return list(self._accounts)

    async def get_chain_id(self) -> int:
        return self._chain_id

    async def get_block_height(self) -> int:
        if self.fail_block_height or self.fail_reads:
            raise ChainReadError("Mock block height unavailable")
        return self._block

    async def get_balance(self, account: str) -> int:
        return self._balances.get(account.lower(), 0)

    async def sign_message(self, account: str, message: str) -> str:
        if account.lower() not in {a.lower() for a in self._accounts}:
            raise AccountUnavailable(f"Unknown account: {account}")
        sig_hash = _sha256(
            b"mock_ledger_sign" + message.encode() + account.lower().encode()
        )
        # 65-byte signature: r(32) + s(32) + v(1)
        return to_hex(sig_hash + sig_hash[:32] + b'\x1b')

    async def submit_transaction(
        self,
        contract_address: str,
        method: str,
        args: Sequence[Any],
        from_account: str,
    ) -> TxReceipt:
        if self.fail_writes:
            raise ChainWriteError(f"{method} failed: mock write failure")

        handler = {
            "registerUser": self._register_user,
            "sendEmail": self._send_email,
            "sendExternalEmail": self._send_external_email,
            "updateContacts": self._update_contacts,
        }.get(method)
        if handler is None:
            raise ChainWriteError(f"Unsupported method: {method}")

        if method == "registerUser" and args[0] in self._registered.get(contract_address.lower(), set()):
            raise ChainWriteError("registerUser failed: username already registered")

        self.mine()
        handler(contract_address, from_account, *args)

        self.transactions.append({
            "contract": contract_address,
            "method": method,
            "args": list(args),
            "from": from_account,
            "block": self._block,
        })

        logs = self._logs.get(contract_address.lower(), [])
        return TxReceipt(
            transaction_hash=logs[-1].transaction_hash if logs else to_hex(bytes(32)),
            block_number=self._block,
            method=method,
        )

    def _register_user(self, contract, sender, username_hash, encrypted_username, public_key):
        self._registered.setdefault(contract.lower(), set()).add(username_hash)
        self.emit(contract, EVENT_USER_REGISTERED, {
            "usernameHash": username_hash,
            "addr": sender,
            "encryptedUsername": encrypted_username,
            "publicKey": public_key,
        })

    def _send_email(self, contract, sender, to, mail_hash, thread_hash, thread_id):
        self.emit(contract, EVENT_EMAIL_SENT, {
            "from": sender,
            "to": to,
            "mailHash": mail_hash,
            "threadHash": thread_hash,
            "threadId": thread_id,
        })

    def _send_external_email(self, contract, sender, origin_contract, to, mail_hash, thread_hash, thread_id):
        self._send_email(contract, sender, to, mail_hash, thread_hash, thread_id)

    def _update_contacts(self, contract, sender, username_hash, ipfs_hash):
        self.emit(contract, EVENT_CONTACTS_UPDATED, {
            "usernameHash": username_hash,
            "ipfsHash": ipfs_hash,
        })

    async def scan_events(
        self,
        contract_address: str,
        event_name: str,
        filter: Dict[str, Any],
        from_block: int,
        to_block: Optional[int] = None,
    ) -> List[LogEntry]:
        if self.fail_reads:
            raise ChainReadError(f"Failed to scan {event_name}: mock read failure")

        upper = self._block if to_block is None else to_block
        return [
            e for e in self._logs.get(contract_address.lower(), [])
            if e.event == event_name
            and max(from_block, 0) <= e.block_number <= upper
            and _matches(e.args, filter)
        ]

    def subscribe_events(
        self,
        contract_address: str,
        event_name: str,
        filter: Dict[str, Any],
        from_block: int,
    ) -> Subscription:
        sub = Subscription(name=f"{event_name}{filter}")
        watch = _Watch(sub, contract_address, event_name, dict(filter), from_block)
        self._watches.append(watch)
        sub.add_stop_callback(lambda: self._watches.remove(watch))

        for entry in self._logs.get(contract_address.lower(), []):
            if entry.event == event_name and entry.block_number >= from_block and _matches(entry.args, filter):
                sub.push(entry)
        return sub
