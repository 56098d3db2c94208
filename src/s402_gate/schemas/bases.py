"""
Shared base models.

Every wire model derives from ``CanonicalModel`` so that Python code can use
snake_case names while JSON on the wire uses camelCase aliases.  The abstract
bases below fix the common surface of signatures, verification outcomes and
transaction confirmations; the EVM adapter supplies the concrete classes.
"""

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class CanonicalModel(BaseModel):
    """Base model with alias-aware construction and JSON-ready dumps."""

    model_config = ConfigDict(populate_by_name=True)

    def to_dict(self) -> Dict[str, Any]:
        """Dump to a JSON-ready dict keyed by wire names, omitting ``None`` fields."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class BaseSignature(CanonicalModel, ABC):
    """
    A signature produced under some signing standard.

    Attributes:
        signature_type: The signing standard that produced the signature
    """

    signature_type: str = Field(..., description="Signing standard that produced the signature")

    @abstractmethod
    def validate_format(self) -> bool:
        """
        Check the signature components.

        Raises:
            ValueError: If a component is out of range.
        """


class VerificationStatus(str, Enum):
    """
    Closed set of verification outcomes.

    The settlement members double as the failure reason surfaced to callers
    in 403 responses.
    """
    SUCCESS = "success"
    INVALID_SIGNATURE = "invalid_signature"
    PARAMETER_MISMATCH = "parameter_mismatch"
    TRANSACTION_NOT_FOUND = "transaction_not_found"
    INSUFFICIENT_CONFIRMATIONS = "insufficient_confirmations"
    TRANSACTION_FAILED = "transaction_failed"
    WRONG_CONTRACT = "wrong_contract"
    NO_MATCHING_SETTLEMENT_EVENT = "no_matching_settlement_event"
    CALLDATA_UNPARSEABLE = "calldata_unparseable"
    UNEXPECTED_FUNCTION_CALL = "unexpected_function_call"
    TRANSACTION_DATA_UNAVAILABLE = "transaction_data_unavailable"
    PAYMENT_PARAMETERS_MISMATCH = "payment_parameters_mismatch"
    PROVIDER_ERROR = "provider_error"


class BaseVerificationResult(CanonicalModel, ABC):
    """
    Outcome of a verification.

    Verifiers do not raise for expected failures; the reason is carried in
    ``status`` with details in ``error_details``.
    """

    verification_type: str = Field(..., description="Type of verification (e.g., evm_settlement)")
    status: VerificationStatus = Field(..., description="Verification result status")
    is_valid: bool = Field(..., description="Whether verification passed")
    message: str = Field(..., description="Human-readable status message")
    error_details: Optional[Dict[str, Any]] = Field(None, description="Detailed error information")

    def is_success(self) -> bool:
        return self.is_valid and self.status == VerificationStatus.SUCCESS


class TransactionStatus(str, Enum):
    """Execution status of a submitted transaction; ``PENDING`` means not waited for."""
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class BaseTransactionConfirmation(CanonicalModel, ABC):
    """A submitted transaction and, when it was waited for, its receipt status."""

    confirmation_type: str = Field(..., description="Type of confirmation (e.g., evm)")
    status: TransactionStatus = Field(..., description="Transaction execution status")
    confirmations: int = Field(default=0, ge=0, description="Number of block confirmations")

    def is_success(self) -> bool:
        return self.status == TransactionStatus.SUCCESS
