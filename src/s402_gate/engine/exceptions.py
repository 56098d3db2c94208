"""
Exception and Error Definitions Module

Defines the exception hierarchy for proof validation, settlement verification,
configuration and client-side settlement. All exceptions inherit from
S402Error for unified exception handling.

Exception Hierarchy:
    S402Error (root)
    ├── PaymentVerificationError
    │   ├── SchemaInvalidError
    │   ├── ParameterMismatchError
    │   ├── SignatureInvalidError
    │   └── SettlementVerificationError
    ├── ConfigurationError
    ├── PaymentRequiredError
    └── PaymentSettlementError
"""

from typing import Any, Dict, List, Optional


class S402Error(Exception):
    """
    Root exception class for all project-specific exceptions.
    """
    pass


class PaymentVerificationError(S402Error):
    """
    Base exception for proof verification failures.

    Every subclass maps to a rejected request: schema errors to 400,
    everything else to 403.

    Attributes:
        reason: Machine-readable failure reason surfaced to the caller
    """
    reason: str = "verification_failed"

    def __init__(self, message: str, reason: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason


class SchemaInvalidError(PaymentVerificationError):
    """
    Raised when the submitted ``s402Proof`` does not match the proof schema.

    Attributes:
        errors: Pydantic error list describing each offending field
    """
    reason = "schema_invalid"

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class ParameterMismatchError(PaymentVerificationError):
    """
    Raised when the payment terms disagree with the route's current terms.

    All failing fields are collected before raising.

    Attributes:
        fields: Names of the failing fields (e.g. ``["value", "deadline"]``)
        errors: Human-readable description per failing field
    """
    reason = "parameter_mismatch"

    def __init__(self, fields: List[str], errors: List[str]) -> None:
        super().__init__(f"Proof validation failed: {', '.join(errors)}")
        self.fields = list(fields)
        self.errors = list(errors)


class SignatureInvalidError(PaymentVerificationError):
    """
    Raised when the EIP-712 authorization signature does not recover to the owner.
    """
    reason = "invalid_signature"


class SettlementVerificationError(PaymentVerificationError):
    """
    Raised when the on-chain settlement of a proof cannot be confirmed.

    Attributes:
        reason: ``VerificationStatus`` value describing the failure
        confirmations: Confirmations observed when the check ran
    """

    def __init__(self, message: str, reason: str, confirmations: int = 0) -> None:
        super().__init__(f"Transaction verification failed: {message}", reason=reason)
        self.confirmations = confirmations


class ConfigurationError(S402Error):
    """
    Raised when configuration is missing or invalid.

    This includes scenarios such as:
    - Malformed addresses or price table entries
    - Confirmation thresholds outside 1-100
    - Unsupported chain ids
    """
    pass


class PaymentRequiredError(S402Error):
    """
    Raised by the client when a 402 is received and automatic settlement is disabled.

    Attributes:
        challenge: Parsed 402 payload, if it could be decoded
    """

    def __init__(self, message: str, challenge: Any = None) -> None:
        super().__init__(message)
        self.challenge = challenge


class PaymentSettlementError(S402Error):
    """
    Raised by the client when the settlement transaction fails.

    This includes scenarios such as:
    - Transaction reverted on-chain
    - Receipt wait timed out
    - RPC errors while building or broadcasting

    Attributes:
        tx_hash: Transaction hash if the transaction was broadcast
    """

    def __init__(self, message: str, tx_hash: Optional[str] = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash
