"""Domain error taxonomy.

Every error carries the HTTP status code the API layer reports it with.
Routers catch ``AssetLinkError`` and translate it to an ``HTTPException``.
"""
from typing import Optional


class AssetLinkError(Exception):
    """Base exception for custody and operation errors."""
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class ValidationError(AssetLinkError):
    """Raised when input is malformed."""
    status_code = 400


class PermissionDeniedError(AssetLinkError):
    """Raised when the caller may not perform an action."""
    status_code = 403


class RoleError(PermissionDeniedError):
    """Raised when the caller's role does not allow the action."""
    pass


class SelfApprovalError(PermissionDeniedError):
    """Raised when a checker tries to decide on their own request."""
    pass


class NotFoundError(AssetLinkError):
    """Raised when an entity does not exist for the caller's tenant."""
    status_code = 404


class StateError(AssetLinkError):
    """Raised when a state machine transition is not allowed."""
    status_code = 409


class ConflictError(AssetLinkError):
    """Raised when a uniqueness rule or concurrent change is violated."""
    status_code = 409


class NotMintedError(StateError):
    """Raised when a listing is requested for an asset that is not minted."""
    pass


class GatewayError(AssetLinkError):
    """Raised when a call to the custodial signer fails."""
    status_code = 502


class GasInsufficientError(GatewayError):
    """Raised when the paying vault cannot cover transaction fees."""

    def __init__(self, message: str = "insufficient gas", available: Optional[str] = None,
                 required: Optional[str] = None):
        super().__init__(message, {'available': available, 'required': required})
        self.available = available
        self.required = required


class SubmissionError(GatewayError):
    """Raised when the custodian refuses or fails a submission."""
    pass


class GatewayTimeoutError(GatewayError):
    """Raised when a confirmation wait exceeds its deadline."""
    status_code = 504


class MarketplaceError(AssetLinkError):
    """Base exception for marketplace quantity rules."""
    status_code = 409


class OversellError(MarketplaceError):
    """Raised when a bid or its acceptance would sell more than was listed."""
    pass


class InsufficientQuantityError(MarketplaceError):
    """Raised when a listing, burn or withdrawal exceeds the available balance."""
    pass


__all__ = [
    'AssetLinkError',
    'ValidationError',
    'PermissionDeniedError',
    'RoleError',
    'SelfApprovalError',
    'NotFoundError',
    'StateError',
    'ConflictError',
    'NotMintedError',
    'GatewayError',
    'GasInsufficientError',
    'SubmissionError',
    'GatewayTimeoutError',
    'MarketplaceError',
    'OversellError',
    'InsufficientQuantityError',
]
