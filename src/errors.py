"""
Errors - Wallet error taxonomy.

Every boundary (service channel, relay, page provider) renders failures in the
same shape: {"success": False, "error": <message>, "code": <CODE>}.
The page side maps the code back onto the matching exception class.
"""

from typing import Optional


class WalletError(Exception):
    """Base class for all wallet errors."""

    code = "WALLET_ERROR"
    default_message = "Wallet error"
    retryable = True

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.default_message)

    def to_response(self) -> dict:
        """Render as a uniform failure response."""
        return {"success": False, "error": str(self), "code": self.code}


class NoWalletError(WalletError):
    code = "NO_WALLET"
    default_message = "No wallet found"


class WalletExistsError(WalletError):
    code = "WALLET_EXISTS"
    default_message = "A wallet already exists"


class WalletLockedError(WalletError):
    code = "WALLET_LOCKED"
    default_message = "Wallet is locked"


class InvalidPasswordError(WalletError):
    code = "INVALID_PASSWORD"
    default_message = "Invalid password or corrupted wallet data"


class InvalidSeedPhraseError(WalletError):
    code = "INVALID_SEED_PHRASE"
    default_message = "Invalid seed phrase"


class InvalidPrivateKeyError(WalletError):
    code = "INVALID_PRIVATE_KEY"
    default_message = "Invalid private key"


class InvalidAddressError(WalletError):
    code = "INVALID_ADDRESS"
    default_message = "Invalid address"


class InvalidTransactionError(WalletError):
    code = "INVALID_TRANSACTION"
    default_message = "Invalid transaction"


class InsufficientBalanceError(WalletError):
    code = "INSUFFICIENT_BALANCE"
    default_message = "Insufficient balance"


class NetworkError(WalletError):
    code = "NETWORK_ERROR"
    default_message = "Network request failed"


class UserRejectedError(WalletError):
    """The user declined an approval. Never retried, never shown as a generic failure."""

    code = "USER_REJECTED"
    default_message = "User rejected the request"
    retryable = False


class TransactionFailedError(WalletError):
    """The chain accepted the transaction but reported an error."""

    code = "TRANSACTION_FAILED"

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason or "unknown error"
        super().__init__(f"Transaction failed: {self.reason}")

    def to_response(self) -> dict:
        response = super().to_response()
        response["reason"] = self.reason
        return response


class UnauthorizedOriginError(WalletError):
    code = "UNAUTHORIZED"
    default_message = "Origin is not connected"


class UnsupportedOperationError(WalletError):
    code = "UNSUPPORTED_OPERATION"
    default_message = "Not supported for this wallet"


class RequestTimeoutError(WalletError):
    code = "TIMEOUT"
    default_message = "Request timed out"


class ApprovalQueueFullError(WalletError):
    code = "APPROVAL_QUEUE_FULL"
    default_message = "Too many pending approvals"


ERRORS_BY_CODE: dict[str, type[WalletError]] = {
    cls.code: cls
    for cls in (
        NoWalletError,
        WalletExistsError,
        WalletLockedError,
        InvalidPasswordError,
        InvalidSeedPhraseError,
        InvalidPrivateKeyError,
        InvalidAddressError,
        InvalidTransactionError,
        InsufficientBalanceError,
        NetworkError,
        UserRejectedError,
        TransactionFailedError,
        UnauthorizedOriginError,
        UnsupportedOperationError,
        RequestTimeoutError,
        ApprovalQueueFullError,
    )
}


def error_from_response(response: dict) -> WalletError:
    """Rebuild the exception carried by a failure response."""
    code = response.get("code")
    message = response.get("error") or WalletError.default_message
    if code == TransactionFailedError.code:
        return TransactionFailedError(response.get("reason") or message)
    cls = ERRORS_BY_CODE.get(code)
    if cls is None:
        error = WalletError(message)
        if code:
            error.code = code
        return error
    return cls(message)
