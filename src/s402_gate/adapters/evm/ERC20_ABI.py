"""
USD1 ERC20 + EIP-2612 Smart Contract ABI Module

Simplified ABI fragments for the token reads the S402 client performs before
settling: the facilitator's allowance and the owner's permit nonce.

Usage:
    from .ERC20_ABI import get_allowance_abi, get_nonces_abi

    token = w3.eth.contract(address=token_address, abi=get_allowance_abi() + get_nonces_abi())
    allowance = await token.functions.allowance(owner, facilitator).call()
"""

from typing import Dict, Any, List


def get_allowance_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for ERC20 `allowance(owner, spender)`.

    Returns:
        List[Dict[str, Any]]: ABI for ERC20 `allowance` function.

    Example:
        abi = get_allowance_abi()
        contract = w3.eth.contract(address=token_address, abi=abi)
        allowance = await contract.functions.allowance(owner, spender).call()
    """
    return [
        {
            "name": "allowance",
            "type": "function",
            "stateMutability": "view",
            "inputs": [
                {"name": "owner", "type": "address"},
                {"name": "spender", "type": "address"},
            ],
            "outputs": [{"name": "", "type": "uint256"}],
        }
    ]


def get_nonces_abi() -> List[Dict[str, Any]]:
    """
    Get ABI for EIP-2612 `nonces(owner)`.

    The returned nonce must be embedded in the next permit the owner signs.

    Returns:
        List[Dict[str, Any]]: ABI for the `nonces` view function.
    """
    return [
        {
            "name": "nonces",
            "type": "function",
            "stateMutability": "view",
            "inputs": [{"name": "owner", "type": "address"}],
            "outputs": [{"name": "", "type": "uint256"}],
        }
    ]
