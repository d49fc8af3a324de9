# tests/test_keys.py
"""
ChainMail Key Derivation & Hashing Tests

Categories:
  K1. HKDF (RFC 5869 vector)
  K2. derive_keys determinism and input handling
  K3. Sealed boxes
  K4. Contract-side hashes (username hash, ENS namehash)
"""

import pytest

from chainmail.cryptography import (
    HKDF,
    ZERO_HASH,
    derive_keys,
    keccak,
    namehash,
    seal,
    to_hex,
    unseal,
    username_hash,
)
from chainmail.cryptography.keys import run_tests
from chainmail.errors import DecryptionError, InvalidPublicKey


SIGNATURE = "0x" + "5e" * 65


# =============================================================================
# K1. HKDF
# =============================================================================

def test_k1_hkdf_rfc5869_case_1():
    ikm = bytes.fromhex("0b" * 22)
    salt = bytes.fromhex("000102030405060708090a0b0c")
    info = bytes.fromhex("f0f1f2f3f4f5f6f7f8f9")

    okm = HKDF(salt=salt).derive(ikm, info=info, length=42)

    assert okm.hex() == (
        "3cb25f25faacd57a90434f64d0362f2a2d2d0a90cf1a5a4c5db02d56ecc4c5bf"
        "34007208d5b887185865"
    )


# =============================================================================
# K2. Derivation
# =============================================================================

def test_k2_1_deterministic():
    assert derive_keys(SIGNATURE).public_key_hex == derive_keys(SIGNATURE).public_key_hex


def test_k2_2_distinct_signatures_distinct_keys():
    assert derive_keys(SIGNATURE).public_key_hex != derive_keys("0x" + "5f" * 65).public_key_hex


def test_k2_3_text_is_utf8():
    assert derive_keys("signed").public_key_hex == derive_keys(b"signed").public_key_hex


@pytest.mark.parametrize("empty", ["", b""])
def test_k2_4_empty_input_rejected(empty):
    with pytest.raises(ValueError):
        derive_keys(empty)


def test_k2_5_repr_hides_private_key():
    keys = derive_keys(SIGNATURE)
    private_hex = bytes(keys.private_key).hex()

    assert private_hex not in repr(keys)
    assert keys.public_key_hex in repr(keys)


def test_k2_6_public_key_is_32_bytes_hex():
    public = derive_keys(SIGNATURE).public_key_hex
    assert public.startswith("0x")
    assert len(public) == 2 + 64


def test_k2_7_known_answer():
    # HKDF-SHA256 seed e23fd6b0...79f740e8, X25519 base-point multiply
    assert derive_keys(SIGNATURE).public_key_hex == (
        "0xb9056006deaea5da989a103ce204d462e1db0e17adc4a4a40726780e2fca437f"
    )


# =============================================================================
# K3. Sealed boxes
# =============================================================================

def test_k3_1_seal_unseal():
    keys = derive_keys(SIGNATURE)
    blob = seal(keys.public_key_hex, "alice@chainmail.eth")

    assert unseal(keys, blob) == b"alice@chainmail.eth"


def test_k3_2_sealing_is_randomized():
    keys = derive_keys(SIGNATURE)
    assert seal(keys.public_key_hex, "x") != seal(keys.public_key_hex, "x")


def test_k3_3_wrong_key_raises():
    blob = seal(derive_keys(SIGNATURE).public_key_hex, "secret")

    with pytest.raises(DecryptionError):
        unseal(derive_keys("0x" + "00" * 65), blob)


def test_k3_4_garbage_raises():
    keys = derive_keys(SIGNATURE)
    with pytest.raises(DecryptionError):
        unseal(keys, "0x1234")
    with pytest.raises(DecryptionError):
        unseal(keys, "not hex at all")


def test_k3_5_module_self_check():
    assert run_tests()


@pytest.mark.parametrize("public_key", ["0x1234", "zz", "", None, "0x" + "ab" * 31])
def test_k3_6_malformed_public_key_raises(public_key):
    with pytest.raises(InvalidPublicKey) as exc:
        seal(public_key, "secret")
    assert exc.value.public_key == public_key


# =============================================================================
# K4. Hashes
# =============================================================================

def test_k4_1_username_hash_is_keccak():
    assert username_hash("alice@chainmail.eth") == to_hex(keccak("alice@chainmail.eth"))
    assert username_hash("alice@chainmail.eth") != username_hash("bob@chainmail.eth")


def test_k4_2_username_hash_rejects_empty():
    with pytest.raises(ValueError):
        username_hash("")


def test_k4_3_keccak_empty_vector():
    assert keccak(b"").hex() == "c5d2460186f7233c927e7db2dcc703c0e500b653ca82273b7bfad8045d85a470"


def test_k4_4_namehash_vectors():
    assert namehash("") == ZERO_HASH
    assert namehash("eth") == "0x93cdeb708b7545dc668eb9280176169d1c33cfd8ed6f04690a0bcc88a93fc4ae"
    assert namehash("foo.eth") == "0xde9b09fd7c5f901e23a3f19fecc54828e9c848539801e86591bd9801b019f84f"


def test_k4_5_namehash_case_insensitive():
    assert namehash("Foo.ETH") == namehash("foo.eth")
