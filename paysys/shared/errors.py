"""Application error taxonomy.

Every error carries an HTTP status and a stable machine-readable code. The
FastAPI handlers in ``main.py`` render them as
``{"success": false, "error": {"message": ..., "code": ...}}``.
"""


class AppError(Exception):
    """Base exception for all client-facing errors."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str, status_code: int = None, code: str = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code


class ConfigurationError(AppError):
    """Raised when configuration is invalid or missing."""

    code = "CONFIGURATION_ERROR"


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class UnauthenticatedError(AppError):
    status_code = 401
    code = "AUTH_REQUIRED"


class TokenExpiredError(UnauthenticatedError):
    code = "TOKEN_EXPIRED"


class UnauthorizedError(AppError):
    status_code = 403
    code = "UNAUTHORIZED"


# Transactions

class DuplicateOrderError(ConflictError):
    code = "DUPLICATE_ORDER_ID"

    def __init__(self, message: str = "Order ID already exists with active transaction"):
        super().__init__(message)


class RecipientConflictError(ValidationError):
    code = "RECIPIENT_CONFLICT"

    def __init__(self, message: str = "Only one recipient type allowed (user or pix key)"):
        super().__init__(message)


class InstallmentsError(ValidationError):
    code = "INVALID_INSTALLMENTS"


class InstallmentsNotAllowedError(InstallmentsError):
    code = "INSTALLMENTS_NOT_ALLOWED"

    def __init__(self, message: str = "Installments only supported for credit card"):
        super().__init__(message)


class InvalidInstallmentsError(InstallmentsError):
    code = "INVALID_INSTALLMENTS"

    def __init__(self, message: str = "Installments quantity must be between 1 and 24"):
        super().__init__(message)


class InvalidStatusError(AppError):
    status_code = 400
    code = "INVALID_TRANSACTION_STATUS"

    def __init__(self, message: str = "Transaction cannot be processed in current status"):
        super().__init__(message)


class WrongMethodError(AppError):
    status_code = 400
    code = "INVALID_PAYMENT_METHOD"

    def __init__(self, message: str = "Invalid payment method for this transaction"):
        super().__init__(message)


class CannotCancelError(InvalidStatusError):
    code = "CANNOT_CANCEL_TRANSACTION"

    def __init__(self, message: str = "Transaction cannot be cancelled in current status"):
        super().__init__(message)


class PixNotInitiatedError(AppError):
    status_code = 400
    code = "PIX_NOT_INITIATED"

    def __init__(self, message: str = "PIX payment not yet initiated"):
        super().__init__(message)


class PaymentProcessingError(AppError):
    status_code = 500
    code = "PAYMENT_PROCESSING_ERROR"

    def __init__(self, message: str = "Payment processing failed"):
        super().__init__(message)


class PaymentTimeoutError(PaymentProcessingError):
    status_code = 504
    code = "PAYMENT_TIMEOUT"

    def __init__(self, message: str = "Payment gateway did not respond in time"):
        super().__init__(message)


class PixProcessingError(PaymentProcessingError):
    code = "PIX_PROCESSING_ERROR"

    def __init__(self, message: str = "PIX payment processing failed"):
        super().__init__(message)


class PixStatusCheckError(PaymentProcessingError):
    code = "PIX_STATUS_CHECK_ERROR"

    def __init__(self, message: str = "Failed to check PIX status"):
        super().__init__(message)


# Cards

class DuplicateCardError(ConflictError):
    code = "DUPLICATE_CARD"

    def __init__(self, message: str = "Card already saved"):
        super().__init__(message)


class CardRejectedError(AppError):
    status_code = 422
    code = "CARD_VALIDATION_REJECTED"


class UpstreamValidationError(AppError):
    status_code = 502
    code = "CARD_VALIDATION_UPSTREAM_ERROR"


class ValidationTimeoutError(AppError):
    status_code = 504
    code = "CARD_VALIDATION_TIMEOUT"


class IntegrityError(AppError):
    """Raised when encrypted data cannot be authenticated."""

    code = "DECRYPTION_FAILED"

    def __init__(self, message: str = "Decryption failed"):
        super().__init__(message)


class DefaultCardConflictError(ConflictError):
    code = "DEFAULT_CARD_CONFLICT"

    def __init__(self, message: str = "Another default card was set concurrently"):
        super().__init__(message)
