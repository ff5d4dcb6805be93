# === MODULE PURPOSE ===
# Error taxonomy for the trading engine.
# Every error is recoverable: a rejected command leaves committed state untouched.

# === KEY CONCEPTS ===
# - ValidationError: malformed stock/order parameters
# - NotFoundError: unknown stock/holding/order id
# - InsufficientBalanceError: buy cannot be covered by cash at current leverage
# - InvalidStateError: operation not allowed in the record's current state


class TradingError(Exception):
    """Base class for all trading engine errors."""

    # Notification type emitted when the error reaches the command boundary
    notification_type = "error"
    title = "Operation Failed"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(TradingError):
    """Raised for malformed stock or order parameters."""

    title = "Invalid Request"


class NotFoundError(TradingError):
    """Raised when a referenced stock, holding or order does not exist."""

    title = "Not Found"


class InsufficientBalanceError(TradingError):
    """Raised when a buy cannot be covered by the available balance."""

    title = "Insufficient Balance"


class InvalidStateError(TradingError):
    """Raised when a record is not in a state that permits the operation."""

    notification_type = "warning"
    title = "No Effect"
