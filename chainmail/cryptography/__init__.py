# chainmail/cryptography/__init__.py
"""
ChainMail Cryptography

    common.py   SHA-256, HKDF, keccak, username hash, ENS namehash
    keys.py     Signature-bound X25519 key derivation, sealed boxes
"""

from .common import (
    HKDF,
    HASH_LEN,
    ZERO_ADDRESS,
    ZERO_HASH,
    from_hex,
    is_zero_address,
    keccak,
    namehash,
    to_hex,
    username_hash,
)

from .keys import (
    KeyPair,
    derive_keys,
    seal,
    unseal,
)

__all__ = [
    # Hashing
    "HKDF",
    "HASH_LEN",
    "ZERO_ADDRESS",
    "ZERO_HASH",
    "from_hex",
    "is_zero_address",
    "keccak",
    "namehash",
    "to_hex",
    "username_hash",
    # Keys
    "KeyPair",
    "derive_keys",
    "seal",
    "unseal",
]
