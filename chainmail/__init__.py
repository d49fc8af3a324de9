# chainmail/__init__.py
"""
ChainMail: Decentralized Mail Protocol Client

- Address-bound identities on an EVM mail contract
- Signature-derived X25519 keys (nothing to store, nothing to lose)
- End-to-end encrypted mail bodies in IPFS
- Threads as content-addressed linked nodes
- Cross-domain routing through ENS MX records

Architecture:
    ┌─────────────────────────────────────────────────────────┐
    │  chainmail                                              │
    │  ├── config.py         # MailConfig, logging setup      │
    │  ├── errors.py         # Error taxonomy                 │
    │  ├── cryptography/     # Hashing, HKDF, sealed boxes    │
    │  │   ├── common.py                                      │
    │  │   └── keys.py                                        │
    │  │                                                      │
    │  └── block/            # Ledger integration             │
    │      ├── ledger.py     # web3.py / mock ledger          │
    │      ├── naming.py     # ENS                            │
    │      ├── storage.py    # IPFS, threads                  │
    │      ├── registry/     # Identities, domain routing     │
    │      ├── transport/    # Mail, contacts                 │
    │      └── session.py    # MailClient                     │
    └─────────────────────────────────────────────────────────┘
"""

__version__ = "0.1.0"

# =============================================================================
# Configuration & Errors
# =============================================================================

from .config import (
    MailConfig,
    NETWORKS,
    load_config,
    configure_logging,
)

from .errors import (
    MailError,
    AccountUnavailable,
    WrongNetwork,
    ChainReadError,
    ChainWriteError,
    UserNotFound,
    NotRegistered,
    UsernameTaken,
    ResolutionError,
    ContentStoreError,
    DecryptionError,
    InvalidPublicKey,
)

# =============================================================================
# Cryptography
# =============================================================================

from .cryptography import (
    KeyPair,
    derive_keys,
    seal,
    unseal,
    username_hash,
    namehash,
)

# =============================================================================
# Block Layer
# =============================================================================

from .block import (
    MailClient,
    Folder,
    MessageEvent,
    MailPage,
    IPFS_AVAILABLE,
)

# =============================================================================
# Exports
# =============================================================================

__all__ = [
    # Version
    "__version__",

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------
    "MailConfig",
    "NETWORKS",
    "load_config",
    "configure_logging",

    # -------------------------------------------------------------------------
    # Errors
    # -------------------------------------------------------------------------
    "MailError",
    "AccountUnavailable",
    "WrongNetwork",
    "ChainReadError",
    "ChainWriteError",
    "UserNotFound",
    "NotRegistered",
    "UsernameTaken",
    "ResolutionError",
    "ContentStoreError",
    "DecryptionError",
    "InvalidPublicKey",

    # -------------------------------------------------------------------------
    # Cryptography
    # -------------------------------------------------------------------------
    "KeyPair",
    "derive_keys",
    "seal",
    "unseal",
    "username_hash",
    "namehash",

    # -------------------------------------------------------------------------
    # Client
    # -------------------------------------------------------------------------
    "MailClient",
    "Folder",
    "MessageEvent",
    "MailPage",

    # -------------------------------------------------------------------------
    # Availability Flags
    # -------------------------------------------------------------------------
    "IPFS_AVAILABLE",
]


# =============================================================================
# Quick Status Check
# =============================================================================

def status() -> dict:
    """
    Get availability status of all components.

    Example:
        >>> import chainmail
        >>> chainmail.status()
        {'version': '0.1.0', 'core': True, 'ipfs': True}
    """
    return {
        'version': __version__,
        'core': True,  # Always available
        'ipfs': IPFS_AVAILABLE,
    }
