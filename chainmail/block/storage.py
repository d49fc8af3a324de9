# chainmail/block/storage.py
"""
ChainMail Block: Content Store

Mail bodies and thread structures live in a content-addressed store (IPFS);
the ledger only carries their hashes.

Thread layout (one IPFS object per thread revision):

    thread root
      ├── "0" → opening mail
      ├── "1" → first reply
      └── "2" → second reply

Replies never rewrite links: append_link returns a new root hash, which the
next EmailSent event carries as threadHash.

Capability:
    put(bytes) -> hash                  get(hash) -> bytes
    put_linked_node(links) -> hash      append_link(hash, link) -> hash
    get_node(hash) -> ThreadNode

Implementations:
    IPFSContentStore: ipfshttpclient against an IPFS HTTP API
    MockContentStore: In-memory, sha256-addressed (for testing)

Adapter:
    ThreadStore: upload_data / new_thread / reply_to_thread / get_thread /
                 get_file_content
"""

from __future__ import annotations

import asyncio
import io
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..cryptography.common import _sha256
from ..errors import ContentStoreError

logger = logging.getLogger("chainmail.storage")

# --- IPFS ---
IPFS_AVAILABLE = False
try:
    import ipfshttpclient
    IPFS_AVAILABLE = True
except ImportError:
    logger.warning("IPFS not available: pip install ipfshttpclient")


# =============================================================================
# Types
# =============================================================================

@dataclass(frozen=True)
class ContentRef:
    """Address and size of a stored blob."""
    hash: str
    size: int


@dataclass(frozen=True)
class Link:
    """Named link inside a linked node."""
    name: str
    hash: str
    size: int = 0

    def to_ipfs(self) -> Dict[str, Any]:
        return {"Name": self.name, "Hash": self.hash, "Size": self.size}

    @classmethod
    def from_ipfs(cls, data: Dict[str, Any]) -> Link:
        return cls(name=str(data["Name"]), hash=data["Hash"], size=int(data.get("Size", 0)))


@dataclass
class ThreadNode:
    """A thread revision: root hash plus its links."""
    hash: str
    links: List[Link] = field(default_factory=list)

    @property
    def mail_hashes(self) -> List[str]:
        """Message addresses, opening message first."""
        ordered = sorted(self.links, key=lambda l: int(l.name) if l.name.isdigit() else len(self.links))
        return [l.hash for l in ordered]

    def __len__(self) -> int:
        return len(self.links)


# =============================================================================
# Capability Interface
# =============================================================================

class ContentStore(ABC):
    """Abstract content-addressed store."""

    @abstractmethod
    async def put(self, data: bytes) -> str:
        pass

    @abstractmethod
    async def get(self, content_hash: str) -> bytes:
        pass

    @abstractmethod
    async def put_linked_node(self, links: List[Link]) -> str:
        pass

    @abstractmethod
    async def append_link(self, content_hash: str, link: Link) -> str:
        pass

    @abstractmethod
    async def get_node(self, content_hash: str) -> ThreadNode:
        pass


# =============================================================================
# IPFS
# =============================================================================

class IPFSContentStore(ContentStore):
    """
    IPFS client wrapper.

    ipfshttpclient is blocking, so every call runs in a worker thread.
    The connection is opened on first use.
    """

    def __init__(self, api_addr: str = "/dns/localhost/tcp/5001/http"):
        self.api_addr = api_addr
        self.client = None

    def _client(self) -> Any:
        if self.client is not None:
            return self.client
        if not IPFS_AVAILABLE:
            raise ContentStoreError("ipfshttpclient not available. Install with: pip install ipfshttpclient")
        try:
            self.client = ipfshttpclient.connect(self.api_addr)
            logger.info(f"Connected to IPFS: {self.api_addr}")
        except Exception as e:
            raise ContentStoreError(f"IPFS connection failed: {e}") from e
        return self.client

    async def _run(self, op: str, fn, *args) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except ContentStoreError:
            raise
        except Exception as e:
            raise ContentStoreError(f"IPFS {op} failed: {e}") from e

    async def put(self, data: bytes) -> str:
        return await self._run("add", lambda: self._client().add_bytes(data))

    async def get(self, content_hash: str) -> bytes:
        return await self._run("cat", lambda: self._client().cat(content_hash))

    async def put_linked_node(self, links: List[Link]) -> str:
        node = json.dumps({"Data": "", "Links": [l.to_ipfs() for l in links]}).encode()
        result = await self._run("object put", lambda: self._client().object.put(io.BytesIO(node)))
        return result["Hash"]

    async def append_link(self, content_hash: str, link: Link) -> str:
        result = await self._run(
            "add-link",
            lambda: self._client().object.patch.add_link(content_hash, link.name, link.hash),
        )
        return result["Hash"]

    async def get_node(self, content_hash: str) -> ThreadNode:
        result = await self._run("object get", lambda: self._client().object.get(content_hash))
        return ThreadNode(
            hash=content_hash,
            links=[Link.from_ipfs(l) for l in result.get("Links", [])],
        )

    def close(self) -> None:
        if self.client is not None:
            self.client.close()
            self.client = None


# =============================================================================
# Mock (for testing without IPFS)
# =============================================================================

class MockContentStore(ContentStore):
    """In-memory store; identical content yields an identical address."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}
        self._nodes: Dict[str, List[Link]] = {}
        self.fail = False

    @staticmethod
    def _address(data: bytes) -> str:
        return "Qm" + _sha256(data).hex()[:44]

    def _check(self) -> None:
        if self.fail:
            raise ContentStoreError("mock content store unavailable")

    async def put(self, data: bytes) -> str:
        self._check()
        address = self._address(data)
        self._blobs[address] = bytes(data)
        return address

    async def get(self, content_hash: str) -> bytes:
        self._check()
        if content_hash not in self._blobs:
            raise ContentStoreError(f"Content not found: {content_hash}")
        return self._blobs[content_hash]

    async def put_linked_node(self, links: List[Link]) -> str:
        self._check()
        encoded = json.dumps([l.to_ipfs() for l in links], sort_keys=True).encode()
        address = self._address(b"node:" + encoded)
        self._nodes[address] = list(links)
        return address

    async def append_link(self, content_hash: str, link: Link) -> str:
        node = await self.get_node(content_hash)
        return await self.put_linked_node(node.links + [link])

    async def get_node(self, content_hash: str) -> ThreadNode:
        self._check()
        if content_hash not in self._nodes:
            raise ContentStoreError(f"Node not found: {content_hash}")
        return ThreadNode(hash=content_hash, links=list(self._nodes[content_hash]))


# =============================================================================
# Thread Store (adapter)
# =============================================================================

class ThreadStore:
    """
    Mail-shaped operations over a ContentStore.

    Usage:
        threads = ThreadStore(IPFSContentStore())
        mail = await threads.upload_data(encrypted_mail)
        thread_hash = await threads.new_thread(mail)
        ...
        reply = await threads.upload_data(encrypted_reply)
        thread_hash = await threads.reply_to_thread(reply, thread_hash)
    """

    def __init__(self, store: ContentStore):
        self._store = store

    @property
    def store(self) -> ContentStore:
        return self._store

    async def upload_data(self, data: Any) -> ContentRef:
        """Store a JSON-serializable payload."""
        return await self.upload_bytes(json.dumps(data).encode("utf-8"))

    async def upload_bytes(self, data: bytes) -> ContentRef:
        content_hash = await self._store.put(data)
        return ContentRef(hash=content_hash, size=len(data))

    async def new_thread(self, mail: Optional[ContentRef]) -> str:
        """
        Start a thread whose link "0" is `mail`.

        Raises:
            ValueError: If mail has no hash or size
        """
        if mail is None or not mail.hash or not mail.size:
            raise ValueError("mail reference needs both hash and size")
        return await self._store.put_linked_node([Link(name="0", hash=mail.hash, size=mail.size)])

    async def reply_to_thread(self, reply: ContentRef, thread_hash: str) -> str:
        """Append `reply` as the next link; returns the new thread hash."""
        thread = await self._store.get_node(thread_hash)
        link = Link(name=str(len(thread.links)), hash=reply.hash, size=reply.size)
        return await self._store.append_link(thread_hash, link)

    async def get_thread(self, thread_hash: str) -> ThreadNode:
        return await self._store.get_node(thread_hash)

    async def get_file(self, content_hash: str) -> bytes:
        return await self._store.get(content_hash)

    async def get_file_content(self, content_hash: str) -> str:
        """Blob decoded as UTF-8."""
        data = await self._store.get(content_hash)
        try:
            return data.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ContentStoreError(f"Content {content_hash} is not UTF-8 text") from e

    async def get_json(self, content_hash: str) -> Any:
        text = await self.get_file_content(content_hash)
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise ContentStoreError(f"Content {content_hash} is not JSON") from e
