"""Call interface of the on-chain vote verifier."""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional

VERIFIER_ABI: List[Dict[str, Any]] = [
    {
        "type": "function",
        "name": "vote",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "electionId", "type": "uint256"},
            {"name": "partyId", "type": "uint256"},
            {"name": "nullifierHash", "type": "uint256"},
            {"name": "root", "type": "uint256"},
            {"name": "a", "type": "uint256[2]"},
            {"name": "b", "type": "uint256[2][2]"},
            {"name": "c", "type": "uint256[2]"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getLastRoot",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "type": "function",
        "name": "isKnownRoot",
        "stateMutability": "view",
        "inputs": [{"name": "root", "type": "uint256"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "type": "function",
        "name": "updateRoot",
        "stateMutability": "nonpayable",
        "inputs": [{"name": "newRoot", "type": "uint256"}],
        "outputs": [],
    },
]


def load_abi(abi_path: Optional[Path] = None) -> List[Dict[str, Any]]:
    """Bundled ABI, or a Hardhat/Foundry artifact / bare ABI list from disk"""
    if abi_path is None:
        return VERIFIER_ABI

    with open(abi_path) as f:
        data = json.load(f)
    return data['abi'] if isinstance(data, dict) else data


def input_types(abi: List[Dict[str, Any]], fn_name: str) -> List[str]:
    for item in abi:
        if item.get('type') == 'function' and item.get('name') == fn_name:
            return [i['type'] for i in item.get('inputs', [])]
    raise KeyError(f"Function {fn_name} not in ABI")
