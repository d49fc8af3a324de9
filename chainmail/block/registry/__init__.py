# chainmail/block/registry/__init__.py
"""
ChainMail Block Registry Layer

Who is who, and where their mail goes.

Components:
    IdentityRegistry: Registration, public key lookup, sign-in
    RoutingResolver: Domain → mail contract via ENS MX records

Usage:
    from chainmail.block.registry import IdentityRegistry, RoutingResolver

    registry = IdentityRegistry(ledger, gate, config.string_to_sign)
    record = await registry.resolve_public_key("bob@chainmail.eth")

    resolver = RoutingResolver(naming, ledger, local_domain=config.domain)
    contract = await resolver.resolve_mail_contract("other.eth")
    record = await registry.resolve_public_key("carol@other.eth", contract)
"""

from .identity import (
    IdentityRegistry,
    Identity,
    Registration,
    PublicKeyRecord,
    SignIn,
)

from .resolver import (
    RoutingResolver,
    CacheEntry,
)

__all__ = [
    # Identity
    "IdentityRegistry",
    "Identity",
    "Registration",
    "PublicKeyRecord",
    "SignIn",
    # Resolver
    "RoutingResolver",
    "CacheEntry",
]
