# chainmail/block/registry/resolver.py
"""
ChainMail Block Registry: Routing Resolver

Finds the mail contract serving a foreign domain through ENS:

    domain ──namehash──▶ registry.resolver(node)  → resolver address
           ──────────▶ resolver.supportsInterface(0x59d1d43c)  must be true
           ──────────▶ resolver.mx(node)          → mail contract address

The interface check gates the record read: a resolver that does not claim
MX support is never asked for a record. Results are cached per domain.

Usage:
    resolver = RoutingResolver(naming, ledger, local_domain="chainmail.eth")

    if resolver.is_external("other.eth"):
        contract = await resolver.resolve_mail_contract("other.eth")
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Dict, Optional

from ..contract import MailContract
from ..ledger import LedgerBackend
from ..naming import ENS_MX_INTERFACE_ID, NamingService
from ...cryptography.common import is_zero_address, namehash
from ...errors import ResolutionError

logger = logging.getLogger("chainmail.resolver")


def _domain_key(domain: str) -> str:
    return domain.strip().lower()


# =============================================================================
# Cache Entry
# =============================================================================

@dataclass
class CacheEntry:
    """Cache entry for a resolved domain."""
    domain: str
    resolver_address: str
    contract_address: str
    cached_at: float
    ttl: float  # Cache TTL in seconds

    def is_expired(self) -> bool:
        """Check if cache entry is expired."""
        return time.time() > self.cached_at + self.ttl


# =============================================================================
# RoutingResolver
# =============================================================================

class RoutingResolver:
    """
    Domain → mail contract resolver with caching.

    Features:
    - ENS resolver lookup
    - MX interface gate before the routing record read
    - In-memory caching with TTL
    """

    def __init__(
        self,
        naming: NamingService,
        ledger: LedgerBackend,
        local_domain: Optional[str] = None,
        cache_ttl: float = 300.0,  # 5 minutes
        enable_cache: bool = True,
    ):
        """
        Initialize resolver.

        Args:
            naming: Naming-service capability
            ledger: Ledger the resolved contracts are bound to
            local_domain: Domain served by the local contract
            cache_ttl: Cache TTL in seconds (default: 300)
            enable_cache: Enable caching (default: True)
        """
        self._naming = naming
        self._ledger = ledger
        self._local_domain = _domain_key(local_domain) if local_domain else None
        self._cache_ttl = cache_ttl
        self._enable_cache = enable_cache

        # Cache: domain -> CacheEntry
        self._cache: Dict[str, CacheEntry] = {}

    # =========================================================================
    # Policy
    # =========================================================================

    def is_external(self, domain: Optional[str]) -> bool:
        """True only for a domain other than the local one."""
        if not domain:
            return False
        if self._local_domain is None:
            return True
        return _domain_key(domain) != self._local_domain

    # =========================================================================
    # Resolution
    # =========================================================================

    async def resolve_domain(self, domain: str) -> str:
        """
        ENS resolver bound to `domain`.

        Raises:
            ResolutionError: Lookup failed or no resolver is set
        """
        try:
            address = await self._naming.resolver(namehash(_domain_key(domain)))
        except Exception as e:
            raise ResolutionError(f"Resolver lookup failed for {domain}: {e}") from e

        if is_zero_address(address):
            raise ResolutionError(f"No resolver set for {domain}")
        return address

    async def resolve_routing_contract(self, resolver_address: str, domain: str) -> str:
        """
        Mail contract from the resolver's MX record.

        Raises:
            ResolutionError: Interface unsupported, lookup failed or empty record
        """
        try:
            supported = await self._naming.supports_interface(resolver_address, ENS_MX_INTERFACE_ID)
        except Exception as e:
            raise ResolutionError(f"Interface check failed on {resolver_address}: {e}") from e

        if not supported:
            raise ResolutionError(
                f"Resolver {resolver_address} for {domain} does not support MX records"
            )

        try:
            address = await self._naming.routing_record(resolver_address, namehash(_domain_key(domain)))
        except Exception as e:
            raise ResolutionError(f"MX record lookup failed for {domain}: {e}") from e

        if is_zero_address(address):
            raise ResolutionError(f"No MX record for {domain}")
        return address

    async def resolve_mail_contract(self, domain: str) -> MailContract:
        """
        Mail contract handle for `domain`.

        Raises:
            ResolutionError: Any hop failed
        """
        key = _domain_key(domain)

        # Check cache
        if self._enable_cache and key in self._cache:
            entry = self._cache[key]
            if not entry.is_expired():
                return MailContract(self._ledger, entry.contract_address, domain=key)
            else:
                del self._cache[key]

        resolver_address = await self.resolve_domain(key)
        contract_address = await self.resolve_routing_contract(resolver_address, key)
        logger.info(f"Resolved {key} → {contract_address}")

        if self._enable_cache:
            self._cache[key] = CacheEntry(
                domain=key,
                resolver_address=resolver_address,
                contract_address=contract_address,
                cached_at=time.time(),
                ttl=self._cache_ttl,
            )

        return MailContract(self._ledger, contract_address, domain=key)

    # =========================================================================
    # Cache Management
    # =========================================================================

    def clear_cache(self) -> None:
        """Clear all cached entries."""
        self._cache.clear()

    def invalidate(self, domain: str) -> None:
        """Invalidate cache entry for a domain."""
        self._cache.pop(_domain_key(domain), None)

    def cache_stats(self) -> Dict[str, int]:
        """Get cache statistics."""
        valid = sum(1 for e in self._cache.values() if not e.is_expired())
        return {
            "total": len(self._cache),
            "valid": valid,
            "expired": len(self._cache) - valid,
        }
