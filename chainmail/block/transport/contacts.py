# chainmail/block/transport/contacts.py
"""
ChainMail Block Transport: Contact Directory

A user's address book is a JSON list sealed to their own public key and
stored in the content store. The ledger only keeps a pointer:

    ContactsUpdated(usernameHash, ipfsHash)

The latest event wins.
"""

from __future__ import annotations

import json
import logging
from typing import List, Optional

from ..contract import ContractGate
from ..ledger import LedgerBackend, TxReceipt
from ..storage import ThreadStore
from ...cryptography.common import username_hash as hash_username
from ...cryptography.keys import KeyPair, seal, unseal
from ...errors import DecryptionError

logger = logging.getLogger("chainmail.contacts")


class ContactDirectory:
    """Encrypted, ledger-indexed contact lists."""

    def __init__(self, ledger: LedgerBackend, gate: ContractGate, threads: ThreadStore):
        self._ledger = ledger
        self._gate = gate
        self._threads = threads

    async def publish(
        self,
        username_hash: str,
        content_address: str,
        account: Optional[str] = None,
    ) -> TxReceipt:
        """Point `username_hash` at a new contact blob."""
        sender = account if account else await self._ledger.get_current_account()
        contract = await self._gate.contract()
        return await contract.update_contacts(username_hash, content_address, sender)

    async def fetch_latest(self, username_hash: str) -> Optional[str]:
        """Content address of the newest contact list, or None."""
        contract = await self._gate.contract()
        events = await contract.contacts_updated({"usernameHash": username_hash}, 0)
        return events[-1].ipfs_hash if events else None

    async def save_contacts(
        self,
        username: str,
        contacts: List[str],
        keys: KeyPair,
        account: Optional[str] = None,
    ) -> TxReceipt:
        """
        Seal, upload and publish a contact list.

        Raises:
            ContentStoreError: Upload failed
            ChainWriteError: Publish failed
        """
        sealed = seal(keys.public_key_hex, json.dumps(sorted(set(contacts))))
        ref = await self._threads.upload_data({"contacts": sealed})
        receipt = await self.publish(hash_username(username), ref.hash, account)
        logger.info(f"Published {len(set(contacts))} contacts for {username}")
        return receipt

    async def load_contacts(self, username: str, keys: KeyPair) -> List[str]:
        """
        Latest contact list (empty when none was published).

        Raises:
            ContentStoreError: Blob unavailable
            DecryptionError: Blob not sealed for `keys`
        """
        address = await self.fetch_latest(hash_username(username))
        if address is None:
            return []

        payload = await self._threads.get_json(address)
        try:
            sealed = payload["contacts"]
        except (KeyError, TypeError) as e:
            raise DecryptionError(f"Contact blob {address} has no contacts field") from e
        return json.loads(unseal(keys, sealed).decode("utf-8"))
