# chainmail/block/contracts/__init__.py
"""
Contract ABIs shipped with ChainMail.

    abi/MailContract.json   registerUser / sendEmail / sendExternalEmail / updateContacts
    abi/ENSRegistry.json    resolver(node)
    abi/MxResolver.json     supportsInterface(id) / mx(node)
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, List

ABI_DIR = Path(__file__).parent / "abi"


def load_abi(name: str) -> List[Dict]:
    """Load contract ABI from JSON file."""
    path = ABI_DIR / f"{name}.json"
    with open(path) as f:
        data = json.load(f)
    return data.get("abi", data) if isinstance(data, dict) else data


MAIL_CONTRACT_ABI = load_abi("MailContract")
ENS_REGISTRY_ABI = load_abi("ENSRegistry")
MX_RESOLVER_ABI = load_abi("MxResolver")

__all__ = [
    "load_abi",
    "MAIL_CONTRACT_ABI",
    "ENS_REGISTRY_ABI",
    "MX_RESOLVER_ABI",
]
