"""PointForge exceptions.

Every failure surfaced by the ledger is a PointForgeError subclass carrying a
stable ``code``. The subclass names the failure category; callers (the API
layer) map categories to status codes:

    ValidationError       malformed or missing fields, rejected before any query
    PreconditionError     business rule rejected the request, no side effects
    NotFoundError         unknown user, transaction, event or promotion
    AuthorizationError    actor's role may not perform the operation
    ConflictError         concurrent mutation or repeated state transition
    ConsistencyViolation  internal invariant broken, transaction aborted

Usage:
    try:
        ledger.apply(request)
    except PreconditionError as e:
        if e.code == "INSUFFICIENT_POINTS":
            handle_insufficient(e.data["available"])
"""


class PointForgeError(Exception):
    """
    Structured exception for ledger operations.

    Args:
        code: Stable machine-readable error code
        message: Human-readable message (defaults to the code's message)
        **data: Extra context (ids, amounts) exposed via ``as_dict()``
    """

    _default_messages = {
        "INVALID_REQUEST": "Malformed request",
        "INVALID_AMOUNT": "Amount must be a positive integer",
        "INVALID_SPENT": "Spent must be a positive amount",
        "INVALID_PROMOTION_ID": "Promotion ids must be integers",
        "INVALID_OPERATOR": "Operator must be 'gte' or 'lte'",
        "UNKNOWN_REQUEST_TYPE": "Unsupported transaction request",
        "USER_NOT_FOUND": "User not found",
        "TRANSACTION_NOT_FOUND": "Transaction not found",
        "EVENT_NOT_FOUND": "Event not found",
        "PROMOTION_NOT_FOUND": "Promotion not found",
        "FORBIDDEN": "Operation not permitted for this role",
        "USER_NOT_VERIFIED": "User is not verified",
        "USER_INACTIVE": "User is not activated",
        "INSUFFICIENT_POINTS": "Insufficient points",
        "SELF_TRANSFER": "Cannot transfer points to yourself",
        "NOT_A_GUEST": "User is not a guest of this event",
        "EVENT_POOL_EXHAUSTED": "Event does not have enough points remaining",
        "EVENT_FULL": "Event has reached capacity",
        "EVENT_ENDED": "Event has ended",
        "ALREADY_GUEST": "User is already a guest of this event",
        "ALREADY_ORGANIZER": "User is already an organizer of this event",
        "NOT_A_REDEMPTION": "Transaction is not a redemption",
        "NOT_FLAGGABLE": "Transaction type cannot be flagged suspicious",
        "SUSPICIOUS_UNCHANGED": "Transaction already has this suspicious flag",
        "STILL_SUSPICIOUS": "Transaction is still flagged suspicious",
        "ALREADY_APPLIED": "Transaction effect already applied",
        "PROMOTION_INACTIVE": "Promotion is not active",
        "PROMOTION_NOT_ONETIME": "Promotion does not require usage tracking",
        "PROMOTION_IN_WALLET": "Promotion already in wallet",
        "PROMOTION_NOT_IN_WALLET": "Promotion not in wallet",
        "PROMOTION_CONSUMED": "Promotion already used",
        "REDEMPTION_ALREADY_PROCESSED": "Redemption already processed",
        "CONCURRENT_MODIFICATION": "Concurrent modification detected, retry the request",
        "TRANSFER_UNBALANCED": "Transfer legs do not sum to zero",
        "NEGATIVE_BALANCE": "Balance would become negative",
        "SIGN_MISMATCH": "Amount sign does not match transaction type",
    }

    def __init__(self, code: str, message: str | None = None, **data):
        self.code = code
        self.message = message or self._default_messages.get(code, code)
        self.data = data
        super().__init__(f"[{code}] {self.message}")

    def as_dict(self) -> dict:
        return {
            "code": self.code,
            "message": self.message,
            "data": self.data,
        }


class ValidationError(PointForgeError):
    """Malformed or missing fields."""


class PreconditionError(PointForgeError):
    """Request is well-formed but a business rule rejects it."""


class NotFoundError(PointForgeError):
    """Referenced record does not exist."""


class AuthorizationError(PointForgeError):
    """Actor may not perform this operation."""


class ConflictError(PointForgeError):
    """
    Concurrent mutation or repeated state transition.

    Safe to retry by resubmitting the whole request.
    """


class ConsistencyViolation(PointForgeError):
    """Internal invariant failed. Never swallow."""
