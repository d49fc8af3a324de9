# chainmail/config.py
"""
ChainMail Configuration

A single MailConfig drives every component. Values come from a JSON file
(the same shape the web client shipped as config.json, camelCase keys are
accepted) and are then overridden by CHAINMAIL_<FIELD> environment variables.

Usage:
    config = load_config("config.json")
    configure_logging(config.log_level)
    client = MailClient.from_config(config, ledger, naming, store)
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Union


# =============================================================================
# Constants
# =============================================================================

# chain id → network name
NETWORKS: Dict[int, str] = {
    1: "mainnet",
    2: "morden",
    3: "ropsten",
    4: "rinkeby",
    5: "goerli",
    42: "kovan",
    1337: "development",
    11155111: "sepolia",
}

DEFAULT_STRING_TO_SIGN = "Sign this string to access your ChainMail account."
DEFAULT_ENS_REGISTRY = "0xe7410170f87102df0055eb195163a03b7f2bff4a"
DEFAULT_FETCH_WINDOW = 10000

ENV_PREFIX = "CHAINMAIL_"


# =============================================================================
# Config
# =============================================================================

@dataclass(frozen=True)
class MailConfig:
    """
    Runtime configuration.

    Attributes:
        contract_address: Local mail contract
        network: Expected network name (see NETWORKS)
        domain: Mail domain served by the local contract
        string_to_sign: Fixed string signed to derive the key pair
        ens_registry_address: ENS registry used for domain resolution
        rpc_url: JSON-RPC endpoint
        ipfs_api_addr: IPFS HTTP API multiaddr
        fetch_window: Blocks scanned per inbox/outbox page
        poll_interval: Seconds between log polls for subscriptions
        resolver_cache_ttl: Seconds a resolved domain stays cached
        ready_timeout: Seconds an operation waits for the contract binding
        log_level: Logging level name
    """
    contract_address: str
    network: str = "mainnet"
    domain: str = "chainmail.eth"
    string_to_sign: str = DEFAULT_STRING_TO_SIGN
    ens_registry_address: str = DEFAULT_ENS_REGISTRY
    rpc_url: str = "http://127.0.0.1:8545"
    ipfs_api_addr: str = "/dns/localhost/tcp/5001/http"
    fetch_window: int = DEFAULT_FETCH_WINDOW
    poll_interval: float = 2.0
    resolver_cache_ttl: float = 300.0
    ready_timeout: float = 30.0
    log_level: str = "INFO"

    def __post_init__(self):
        if not self.contract_address:
            raise ValueError("contract_address is required")
        if self.fetch_window <= 0:
            raise ValueError("fetch_window must be positive")

    def with_overrides(self, **overrides: Any) -> MailConfig:
        """Copy with some fields replaced."""
        return replace(self, **overrides)


def _snake_case(key: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", key).lower()


def _coerce(value: str, target: Any) -> Any:
    if target is int:
        return int(value)
    if target is float:
        return float(value)
    return value


def load_config(
    path: Optional[Union[str, Path]] = None,
    env: Optional[Dict[str, str]] = None,
) -> MailConfig:
    """
    Load configuration from JSON file and environment.

    Args:
        path: JSON config file (optional)
        env: Environment mapping (defaults to os.environ)

    Returns:
        MailConfig

    Raises:
        ValueError: If no contract address is configured
    """
    env = os.environ if env is None else env
    known = {f.name: f for f in fields(MailConfig)}
    values: Dict[str, Any] = {}

    if path is not None:
        with open(path) as f:
            data = json.load(f)
        for key, value in data.items():
            name = _snake_case(key)
            if name in known:
                values[name] = value

    for name, f in known.items():
        raw = env.get(ENV_PREFIX + name.upper())
        if raw is not None:
            # annotations are strings under `from __future__ import annotations`
            target = {"int": int, "float": float}.get(str(f.type), str)
            values[name] = _coerce(raw, target)

    if not values.get("contract_address"):
        raise ValueError(
            f"No contract address configured (set contractAddress or {ENV_PREFIX}CONTRACT_ADDRESS)"
        )

    return MailConfig(**values)


def configure_logging(level: Union[str, int] = "INFO") -> None:
    """Configure root logging for ChainMail processes."""
    logging.basicConfig(
        level=level if isinstance(level, int) else getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
