"""
EIP-712 typed data for EIP-3009 transferWithAuthorization
Shared by the signer (buyer) and the simulated ledger (merchant)
"""

from typing import Any, Dict, Optional

from web3 import Web3

NETWORK_CHAIN_IDS = {
    "base-sepolia": 84532,
    "base": 8453,
}

DEFAULT_TOKEN_NAME = "USDC"
DEFAULT_TOKEN_VERSION = "2"


def chain_id_for(network: str) -> int:
    try:
        return NETWORK_CHAIN_IDS[network]
    except KeyError:
        raise ValueError(f"Unsupported network: {network}")


def is_address(value: Optional[str]) -> bool:
    """0x-prefixed, 20-byte hex address"""
    return isinstance(value, str) and value.startswith("0x") and Web3.is_address(value)


def nonce_to_bytes(nonce: str) -> bytes:
    raw = bytes.fromhex(nonce[2:] if nonce.startswith("0x") else nonce)
    if len(raw) > 32:
        raise ValueError("Authorization nonce longer than 32 bytes")
    return raw.rjust(32, b"\x00")


def create_typed_data(
    *,
    from_address: str,
    to: str,
    value: int,
    valid_after: int,
    valid_before: int,
    nonce: str,
    chain_id: int,
    verifying_contract: str,
    token_name: str = DEFAULT_TOKEN_NAME,
    token_version: str = DEFAULT_TOKEN_VERSION,
) -> Dict[str, Any]:
    """Create EIP-712 typed data for payment authorization"""
    return {
        "types": {
            "EIP712Domain": [
                {"name": "name", "type": "string"},
                {"name": "version", "type": "string"},
                {"name": "chainId", "type": "uint256"},
                {"name": "verifyingContract", "type": "address"},
            ],
            "TransferWithAuthorization": [
                {"name": "from", "type": "address"},
                {"name": "to", "type": "address"},
                {"name": "value", "type": "uint256"},
                {"name": "validAfter", "type": "uint256"},
                {"name": "validBefore", "type": "uint256"},
                {"name": "nonce", "type": "bytes32"},
            ],
        },
        "primaryType": "TransferWithAuthorization",
        "domain": {
            "name": token_name,
            "version": token_version,
            "chainId": chain_id,
            "verifyingContract": Web3.to_checksum_address(verifying_contract),
        },
        "message": {
            "from": Web3.to_checksum_address(from_address),
            "to": Web3.to_checksum_address(to),
            "value": int(value),
            "validAfter": int(valid_after),
            "validBefore": int(valid_before),
            "nonce": nonce_to_bytes(nonce),
        },
    }
