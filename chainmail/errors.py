# chainmail/errors.py
"""
ChainMail Error Taxonomy

Every public operation either returns a typed result or raises exactly one
of the errors below. Callers branch on the class, never on the message.

    MailError
    ├── AccountUnavailable    no active signing account
    ├── WrongNetwork          connected chain != configured network
    ├── ChainReadError        log scan / call failed
    ├── ChainWriteError       transaction rejected or failed
    ├── UserNotFound          no registration for a username
    │   └── NotRegistered     account present but never registered
    ├── UsernameTaken         registration already exists
    ├── ResolutionError       ENS / MX lookup failed or interface missing
    ├── ContentStoreError     IPFS put/get failed
    ├── DecryptionError       sealed box could not be opened
    └── InvalidPublicKey      published key is not a usable X25519 key
"""

from __future__ import annotations

from typing import Optional


class MailError(Exception):
    """Base ChainMail error."""
    pass


class AccountUnavailable(MailError):
    """No active account on the ledger connection."""
    def __init__(self, message: str = "Account not found."):
        super().__init__(message)


class WrongNetwork(MailError):
    """Connected ledger network does not match the configured one."""
    def __init__(self, expected: str, actual: Optional[str]):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Wrong network: expected {expected}, connected to {actual or 'unknown'}")


class ChainReadError(MailError):
    """Ledger read (scan, call, block height) failed."""
    pass


class ChainWriteError(MailError):
    """Ledger write (transaction) failed or was rejected."""
    pass


class UserNotFound(MailError):
    """No registration event for the requested user."""
    def __init__(self, query: str, message: Optional[str] = None):
        self.query = query
        super().__init__(message or f"User not found: {query}")


class NotRegistered(UserNotFound):
    """Account is available but has never registered."""
    def __init__(self, address: str):
        self.address = address
        super().__init__(address, f"User not registered: {address}")


class UsernameTaken(MailError):
    """Username already bound on the ledger."""
    def __init__(self, username: str):
        self.username = username
        super().__init__(f"Username is already taken: {username}")


class ResolutionError(MailError):
    """Naming-service or routing-record lookup failed."""
    pass


class ContentStoreError(MailError):
    """Content-addressed store failure."""
    pass


class DecryptionError(MailError):
    """Ciphertext could not be decrypted with the given key pair."""
    pass


class InvalidPublicKey(MailError):
    """Published public key is not a valid X25519 key."""
    def __init__(self, public_key: object):
        self.public_key = public_key
        super().__init__(f"Invalid public key: {public_key!r}")
