# chainmail/cryptography/keys.py
"""
ChainMail Key Derivation

Login is "sign a fixed string, re-derive your key": the wallet signature over
config.string_to_sign is the only secret input, so the same account always
recovers the same X25519 key pair and nothing has to be stored.

    signature ──HKDF-SHA256──▶ 32B seed ──▶ X25519 PrivateKey ──▶ PublicKey

Sealed boxes (PyNaCl) encrypt small payloads (the username, the contact list)
under a public key; only the matching private key can open them.

Usage:
    keys = derive_keys(signed_string)
    blob = seal(keys.public_key_hex, "alice@chainmail.eth")
    name = unseal(keys, blob).decode()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from nacl.exceptions import CryptoError
from nacl.public import PrivateKey, PublicKey, SealedBox

from .common import HKDF, to_hex, from_hex
from ..errors import DecryptionError, InvalidPublicKey


# =============================================================================
# Constants
# =============================================================================

KDF_SALT = b"chainmail-signature-kdf-v1"
KDF_INFO = b"chainmail-x25519-private-key"
SEED_BYTES = 32


# =============================================================================
# Types
# =============================================================================

@dataclass(frozen=True)
class KeyPair:
    """
    Derived X25519 key pair.

    The private key lives only in process memory for the session.
    """
    private_key: PrivateKey
    public_key: PublicKey

    @property
    def public_key_hex(self) -> str:
        """Public key as published in the registration event."""
        return to_hex(bytes(self.public_key))

    def __repr__(self) -> str:
        return f"KeyPair(public_key={self.public_key_hex})"


# =============================================================================
# Derivation
# =============================================================================

def derive_keys(signed_string: Union[str, bytes]) -> KeyPair:
    """
    Derive a key pair from a signature.

    Args:
        signed_string: Signer output over the fixed login string; text is
            taken as UTF-8, bytes as-is

    Returns:
        KeyPair (identical for identical input)
    """
    if not signed_string:
        raise ValueError("signed_string must not be empty")

    ikm = signed_string.encode("utf-8") if isinstance(signed_string, str) else bytes(signed_string)
    seed = HKDF(salt=KDF_SALT).derive(ikm, info=KDF_INFO, length=SEED_BYTES)

    private_key = PrivateKey(seed)
    return KeyPair(private_key=private_key, public_key=private_key.public_key)


# =============================================================================
# Sealed boxes
# =============================================================================

def seal(public_key_hex: str, plaintext: Union[str, bytes]) -> str:
    """
    Encrypt for the holder of `public_key_hex`; returns 0x-hex ciphertext.

    Raises:
        InvalidPublicKey: Key is empty, not hex or not 32 bytes
    """
    if not isinstance(public_key_hex, str) or not public_key_hex:
        raise InvalidPublicKey(public_key_hex)
    try:
        box = SealedBox(PublicKey(from_hex(public_key_hex)))
    except (CryptoError, TypeError, ValueError) as e:
        raise InvalidPublicKey(public_key_hex) from e

    data = plaintext.encode("utf-8") if isinstance(plaintext, str) else plaintext
    return to_hex(box.encrypt(data))


def unseal(keys: KeyPair, ciphertext_hex: str) -> bytes:
    """Open a sealed box with the key pair's private key."""
    try:
        return SealedBox(keys.private_key).decrypt(from_hex(ciphertext_hex))
    except (CryptoError, ValueError) as e:
        raise DecryptionError(f"Failed to decrypt payload: {e}") from e


# =============================================================================
# Test
# =============================================================================

def run_tests() -> bool:
    """Self-check for derivation and sealing."""
    print("=" * 70)
    print("ChainMail Key Derivation Test")
    print("=" * 70)

    results = {}

    signature = "0x" + "ab" * 65
    a = derive_keys(signature)
    b = derive_keys(signature)
    results["deterministic"] = a.public_key_hex == b.public_key_hex
    print(f"  Deterministic: {results['deterministic']}")

    other = derive_keys("0x" + "cd" * 65)
    results["distinct"] = other.public_key_hex != a.public_key_hex
    print(f"  Distinct inputs differ: {results['distinct']}")

    blob = seal(a.public_key_hex, "alice@chainmail.eth")
    results["seal"] = unseal(b, blob) == b"alice@chainmail.eth"
    print(f"  Seal/unseal: {results['seal']}")

    try:
        unseal(other, blob)
        results["wrong_key"] = False
    except DecryptionError:
        results["wrong_key"] = True
    print(f"  Wrong key rejected: {results['wrong_key']}")

    all_pass = all(results.values())
    print(f"{'ALL TESTS PASSED ✅' if all_pass else 'SOME TESTS FAILED ❌'}")
    return all_pass


if __name__ == "__main__":
    run_tests()
