# chainmail/block/events.py
"""
ChainMail Block: Event Types

Typed views over raw ledger logs. The mail contract emits three events:

    UserRegistered(bytes32 indexed usernameHash, address indexed addr,
                   string encryptedUsername, string publicKey)
    EmailSent(address indexed from, address indexed to,
              string mailHash, string threadHash, bytes32 indexed threadId)
    ContactsUpdated(bytes32 indexed usernameHash, string ipfsHash)

Logs are immutable; every folder/thread/contact view is a pure reduction
over an explicitly block-bounded scan (see uniq_by).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Hashable, Iterable, List, Optional, TypeVar


T = TypeVar('T')


# =============================================================================
# Constants
# =============================================================================

EVENT_USER_REGISTERED = "UserRegistered"
EVENT_EMAIL_SENT = "EmailSent"
EVENT_CONTACTS_UPDATED = "ContactsUpdated"


class Folder(Enum):
    """Mailbox direction."""
    INBOX = "inbox"
    OUTBOX = "outbox"

    def filter_for(self, address: str) -> Dict[str, str]:
        """Indexed-argument filter selecting this folder for `address`."""
        return {"to": address} if self is Folder.INBOX else {"from": address}


# =============================================================================
# Raw log
# =============================================================================

@dataclass(frozen=True)
class LogEntry:
    """
    A single ledger log as returned by the ledger capability.

    Attributes:
        event: Event name
        args: Decoded arguments (bytes normalized to 0x-hex)
        block_number: Block containing the log
        log_index: Emission order within the block
        transaction_hash: Emitting transaction
        address: Emitting contract
    """
    event: str
    args: Dict[str, Any]
    block_number: int
    log_index: int = 0
    transaction_hash: Optional[str] = None
    address: Optional[str] = None

    @property
    def position(self) -> tuple:
        """Total order key: block, then emission order."""
        return (self.block_number, self.log_index)


# =============================================================================
# Typed events
# =============================================================================

@dataclass(frozen=True)
class MessageEvent:
    """One EmailSent entry."""
    from_address: str
    to_address: str
    mail_hash: str
    thread_hash: str
    thread_id: str
    block_number: int
    log_index: int = 0
    subject: str = ""
    time: Optional[str] = None
    transaction_hash: Optional[str] = None
    contract_address: Optional[str] = None

    @classmethod
    def from_log(cls, entry: LogEntry) -> MessageEvent:
        args = entry.args
        return cls(
            from_address=args["from"],
            to_address=args["to"],
            mail_hash=args["mailHash"],
            thread_hash=args["threadHash"],
            thread_id=args["threadId"],
            block_number=entry.block_number,
            log_index=entry.log_index,
            subject=args.get("subject", ""),
            time=args.get("time"),
            transaction_hash=entry.transaction_hash,
            contract_address=entry.address,
        )

    def correspondent(self, folder: Folder) -> str:
        """The other party: sender for inbox, recipient for outbox."""
        return self.from_address if folder is Folder.INBOX else self.to_address

    @property
    def position(self) -> tuple:
        return (self.block_number, self.log_index)


@dataclass(frozen=True)
class RegistrationEvent:
    """One UserRegistered entry."""
    username_hash: str
    address: str
    encrypted_username: str
    public_key: str
    block_number: int

    @classmethod
    def from_log(cls, entry: LogEntry) -> RegistrationEvent:
        args = entry.args
        return cls(
            username_hash=args["usernameHash"],
            address=args["addr"],
            encrypted_username=args["encryptedUsername"],
            public_key=args["publicKey"],
            block_number=entry.block_number,
        )


@dataclass(frozen=True)
class ContactsEvent:
    """One ContactsUpdated entry."""
    username_hash: str
    ipfs_hash: str
    block_number: int

    @classmethod
    def from_log(cls, entry: LogEntry) -> ContactsEvent:
        return cls(
            username_hash=entry.args["usernameHash"],
            ipfs_hash=entry.args["ipfsHash"],
            block_number=entry.block_number,
        )


@dataclass
class MailPage:
    """
    One backfill window.

    Attributes:
        events: Most-recent-first, one per thread
        next_until_block: Pass as until_block to fetch the next older page
    """
    events: List[MessageEvent] = field(default_factory=list)
    next_until_block: int = 0

    @property
    def has_more(self) -> bool:
        """False once the window reached genesis."""
        return self.next_until_block > 0


# =============================================================================
# Reducers
# =============================================================================

def uniq_by(items: Iterable[T], key: Callable[[T], Hashable]) -> List[T]:
    """Keep the first item for each key, preserving order."""
    seen = set()
    result: List[T] = []
    for item in items:
        k = key(item)
        if k in seen:
            continue
        seen.add(k)
        result.append(item)
    return result


def normalize_address(address: str) -> str:
    """Case-insensitive comparison key for addresses."""
    return address.lower()
