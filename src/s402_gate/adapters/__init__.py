from .evm import (
    ChainClient,
    Web3ChainClient,
    SettlementVerifier,
    EVMECDSASignature,
    PaymentData,
    S402Proof,
    S402Context,
    SettlementResult,
    EVMTransactionConfirmation,
)

__all__ = [
    "ChainClient",
    "Web3ChainClient",
    "SettlementVerifier",
    "EVMECDSASignature",
    "PaymentData",
    "S402Proof",
    "S402Context",
    "SettlementResult",
    "EVMTransactionConfirmation",
]
