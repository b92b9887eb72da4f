"""
Error taxonomy for the anonymous voting credential system.

Terminal errors (ValidationError, NotRegisteredError, AlreadyVotedError)
are surfaced to the caller as-is. ProofGenerationError and ChainSyncError
may be retried by the caller with a fresh root; nothing here retries on
its own.
"""

from typing import Any, Optional


class VotingError(Exception):
    """Base exception for voting operations"""
    pass


class ValidationError(VotingError):
    """Missing or malformed request parameters"""
    pass


class NotRegisteredError(VotingError):
    """Recreated commitment is not a leaf of the accumulator"""
    pass


class TreeCapacityError(VotingError):
    """Accumulator is full"""
    pass


class ProofGenerationError(VotingError):
    """Prover rejected the witness or returned a malformed result"""
    pass


class ChainSyncError(VotingError):
    """Root reconciliation with the verifier contract failed"""

    def __init__(self, message: str, tx_hash: Optional[str] = None):
        super().__init__(message)
        self.tx_hash = tx_hash


class AlreadyVotedError(VotingError):
    """Nullifier hash already marked as used.

    When detected after a successful on-chain submission the receipt is
    attached for information; the vote is still not counted twice.
    """

    def __init__(self, message: str, receipt: Optional[Any] = None):
        super().__init__(message)
        self.receipt = receipt


class ChainSubmissionError(VotingError):
    """Vote transaction reverted for a reason other than double voting"""

    def __init__(self, reason: str, category: str = "transaction reverted",
                 tx_hash: Optional[str] = None):
        super().__init__(f"{category}: {reason}")
        self.reason = reason
        self.category = category
        self.tx_hash = tx_hash


class ConfirmationTimeoutError(VotingError):
    """Confirmation wait expired; the transaction may still be mined"""

    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(
            f"Transaction {tx_hash} not confirmed within {timeout:.0f}s")
        self.tx_hash = tx_hash
        self.timeout = timeout


class ChainRevertError(VotingError):
    """Contract call or gas estimation reverted"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class ChainClientError(VotingError):
    """Transport, signing or configuration failure talking to the chain"""
    pass
