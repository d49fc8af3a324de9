# chainmail/cryptography/common.py
"""
ChainMail Common Hashing

Shared digests used across the client:
  - SHA-256 / HKDF (RFC 5869) for key derivation
  - keccak-256 for everything the mail contract indexes (username hashes,
    ENS namehash), matching Solidity's keccak256 / web3 sha3

All 32-byte values that travel through the ledger layer are represented as
0x-prefixed lowercase hex strings.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import Optional, Union

from web3 import Web3


# =============================================================================
# Constants
# =============================================================================

HASH_LEN: int = 32
ZERO_HASH: str = "0x" + "00" * HASH_LEN
ZERO_ADDRESS: str = "0x" + "00" * 20


# =============================================================================
# Utility Functions
# =============================================================================

def _sha256(*chunks: bytes) -> bytes:
    """Compute SHA-256 hash of concatenated inputs."""
    h = hashlib.sha256()
    for c in chunks:
        h.update(c)
    return h.digest()


def to_hex(value: Union[bytes, bytearray, str]) -> str:
    """Normalize bytes or hex string to 0x-prefixed lowercase hex."""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    value = value.lower()
    return value if value.startswith("0x") else "0x" + value


def from_hex(value: str) -> bytes:
    """Decode 0x-prefixed (or bare) hex."""
    return bytes.fromhex(value[2:] if value.startswith("0x") else value)


def is_zero_address(address: Optional[str]) -> bool:
    """True for None, empty or the all-zero address."""
    if not address:
        return True
    return int(address, 16) == 0


# =============================================================================
# Keccak
# =============================================================================

def keccak(data: Union[bytes, str]) -> bytes:
    """keccak-256 of bytes, or of UTF-8 text."""
    if isinstance(data, str):
        return bytes(Web3.keccak(text=data))
    return bytes(Web3.keccak(data))


def username_hash(username: str) -> str:
    """
    Index key for a username.

    Matches `web3.sha3(username)` on the contract side: keccak-256 over the
    UTF-8 bytes, as 0x-hex.
    """
    if not username:
        raise ValueError("username must not be empty")
    return to_hex(keccak(username))


def namehash(name: str) -> str:
    """
    ENS namehash (EIP-137).

        namehash('')        = 0x00..00
        namehash('a.b.eth') = keccak(namehash('b.eth') || keccak('a'))
    """
    node = b"\x00" * HASH_LEN
    if name:
        for label in reversed(name.lower().split(".")):
            node = keccak(node + keccak(label))
    return to_hex(node)


# =============================================================================
# HKDF (RFC 5869)
# =============================================================================

class HKDF:
    """HMAC-based Key Derivation Function (RFC 5869)."""

    HASH_LEN: int = HASH_LEN

    def __init__(self, salt: Optional[bytes] = None):
        self.salt = salt if salt is not None else b"\x00" * self.HASH_LEN

    def extract(self, ikm: bytes) -> bytes:
        """HKDF-Extract: PRK = HMAC(salt, IKM)"""
        return hmac.new(self.salt, ikm, hashlib.sha256).digest()

    def expand(self, prk: bytes, info: bytes = b"", length: int = 32) -> bytes:
        """HKDF-Expand: OKM = T(1) || T(2) || ... truncated to length"""
        n_blocks = (length + self.HASH_LEN - 1) // self.HASH_LEN
        okm = b""
        t_prev = b""
        for i in range(1, n_blocks + 1):
            t_prev = hmac.new(prk, t_prev + info + bytes([i]), hashlib.sha256).digest()
            okm += t_prev
        return okm[:length]

    def derive(self, ikm: bytes, info: bytes = b"", length: int = 32) -> bytes:
        """One-shot derivation: Extract then Expand."""
        return self.expand(self.extract(ikm), info, length)
