from .chain import ChainClient, Web3ChainClient
from .constants import (
    S402_FACILITATOR,
    USD1_TOKEN,
    USD1_DECIMALS,
    ZERO_ADDRESS,
    BNB_CHAIN_ID,
    BSC_TESTNET_CHAIN_ID,
    amount_to_value,
    value_to_amount,
    format_token_amount,
    get_chain_config,
)
from .decoders import (
    SettlementEvent,
    SettlementCall,
    decode_settlement_log,
    decode_settlement_calldata,
)
from .schemas import (
    EVMECDSASignature,
    PaymentData,
    S402Proof,
    S402Context,
    SettlementResult,
    EVMTransactionConfirmation,
)
from .settlement import SettlementVerifier
from .signatures import (
    build_s402_domain,
    build_payment_typed_data,
    sign_payment_authorization,
    sign_permit,
    query_erc20_allowance,
    query_permit_nonce,
    send_settlement_transaction,
)
from .standards import EIP712Domain, PAYMENT_AUTHORIZATION_TYPES
from .verifies import verify_payment_signature, recover_payment_signer, compute_payment_hash

__all__ = [
    "ChainClient",
    "Web3ChainClient",
    "S402_FACILITATOR",
    "USD1_TOKEN",
    "USD1_DECIMALS",
    "ZERO_ADDRESS",
    "BNB_CHAIN_ID",
    "BSC_TESTNET_CHAIN_ID",
    "amount_to_value",
    "value_to_amount",
    "format_token_amount",
    "get_chain_config",
    "SettlementEvent",
    "SettlementCall",
    "decode_settlement_log",
    "decode_settlement_calldata",
    "EVMECDSASignature",
    "PaymentData",
    "S402Proof",
    "S402Context",
    "SettlementResult",
    "EVMTransactionConfirmation",
    "SettlementVerifier",
    "build_s402_domain",
    "build_payment_typed_data",
    "sign_payment_authorization",
    "sign_permit",
    "query_erc20_allowance",
    "query_permit_nonce",
    "send_settlement_transaction",
    "EIP712Domain",
    "PAYMENT_AUTHORIZATION_TYPES",
    "verify_payment_signature",
    "recover_payment_signer",
    "compute_payment_hash",
]
