# chainmail/block/transport/__init__.py
"""
ChainMail Block Transport Layer

Mail and contact lists over the ledger log and the content store.

Modules:
    protocol: MessageProtocol (send / listen / fetch_page / load_thread)
    contacts: ContactDirectory (sealed contact lists)

Usage:
    from chainmail.block.transport import MessageProtocol, Folder

    protocol = MessageProtocol(ledger, gate, resolver, threads)
    page = await protocol.fetch_page(Folder.INBOX)
"""

from ..events import Folder

from .protocol import (
    MessageProtocol,
    MailListener,
    ThreadView,
)

from .contacts import ContactDirectory

__all__ = [
    "Folder",
    "MessageProtocol",
    "MailListener",
    "ThreadView",
    "ContactDirectory",
]
