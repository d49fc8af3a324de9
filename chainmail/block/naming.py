# chainmail/block/naming.py
"""
ChainMail Block: Naming Service Capability

Domain → mail contract goes through two ENS hops:

    ENS registry.resolver(namehash(domain))      → resolver contract
    resolver.supportsInterface(0x59d1d43c)       → must be true
    resolver.mx(namehash(domain))                → mail contract

Implementations:
    Web3NamingService: ENS over web3.py AsyncWeb3
    MockNamingService: In-memory records (for testing)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from web3 import AsyncWeb3

from .contracts import ENS_REGISTRY_ABI, MX_RESOLVER_ABI
from ..cryptography.common import ZERO_ADDRESS, from_hex, namehash


# =============================================================================
# Constants
# =============================================================================

# supportsInterface id for the MX record extension
ENS_MX_INTERFACE_ID = "0x59d1d43c"


# =============================================================================
# Capability Interface
# =============================================================================

class NamingService(ABC):
    """Abstract naming-service capability. Errors propagate as raised."""

    @abstractmethod
    async def resolver(self, name_hash: str) -> str:
        """Resolver contract bound to `name_hash` (zero address if none)."""
        pass

    @abstractmethod
    async def supports_interface(self, resolver_address: str, interface_id: str) -> bool:
        pass

    @abstractmethod
    async def routing_record(self, resolver_address: str, name_hash: str) -> str:
        """MX record: mail contract address for `name_hash`."""
        pass


# =============================================================================
# Web3 (ENS)
# =============================================================================

class Web3NamingService(NamingService):
    """ENS lookups through an AsyncWeb3 connection."""

    def __init__(self, w3: AsyncWeb3, registry_address: str):
        """
        Args:
            w3: Connected AsyncWeb3 (share Web3Ledger.w3)
            registry_address: ENS registry contract
        """
        self._w3 = w3
        self._registry = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(registry_address),
            abi=ENS_REGISTRY_ABI,
        )

    def _resolver_contract(self, resolver_address: str) -> Any:
        return self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(resolver_address),
            abi=MX_RESOLVER_ABI,
        )

    async def resolver(self, name_hash: str) -> str:
        return await self._registry.functions.resolver(from_hex(name_hash)).call()

    async def supports_interface(self, resolver_address: str, interface_id: str) -> bool:
        contract = self._resolver_contract(resolver_address)
        return await contract.functions.supportsInterface(from_hex(interface_id)).call()

    async def routing_record(self, resolver_address: str, name_hash: str) -> str:
        contract = self._resolver_contract(resolver_address)
        return await contract.functions.mx(from_hex(name_hash)).call()


# =============================================================================
# Mock (for testing without ENS)
# =============================================================================

class MockNamingService(NamingService):
    """
    In-memory ENS.

    Records every call in `calls` so tests can assert which hops ran.
    """

    def __init__(self):
        self._resolvers: Dict[str, str] = {}
        self._interfaces: Dict[str, bool] = {}
        self._mx: Dict[Tuple[str, str], str] = {}
        self.calls: List[Tuple[str, ...]] = []
        self.fail_resolver = False
        self.fail_interface = False
        self.fail_record = False

    def set_domain(
        self,
        domain: str,
        resolver_address: str,
        mail_contract: Optional[str] = None,
        supports_mx: bool = True,
    ) -> None:
        """Bind `domain` to a resolver, optionally with an MX record."""
        node = namehash(domain)
        self._resolvers[node] = resolver_address
        self._interfaces[resolver_address.lower()] = supports_mx
        if mail_contract is not None:
            self._mx[(resolver_address.lower(), node)] = mail_contract

    async def resolver(self, name_hash: str) -> str:
        self.calls.append(("resolver", name_hash))
        if self.fail_resolver:
            raise ConnectionError("mock ENS registry unavailable")
        return self._resolvers.get(name_hash, ZERO_ADDRESS)

    async def supports_interface(self, resolver_address: str, interface_id: str) -> bool:
        self.calls.append(("supportsInterface", resolver_address, interface_id))
        if self.fail_interface:
            raise ConnectionError("mock resolver unavailable")
        if interface_id.lower() != ENS_MX_INTERFACE_ID:
            return False
        return self._interfaces.get(resolver_address.lower(), False)

    async def routing_record(self, resolver_address: str, name_hash: str) -> str:
        self.calls.append(("mx", resolver_address, name_hash))
        if self.fail_record:
            raise ConnectionError("mock MX record unavailable")
        return self._mx.get((resolver_address.lower(), name_hash), ZERO_ADDRESS)
