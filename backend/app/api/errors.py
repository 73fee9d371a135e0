"""
Application exceptions

Request-level failures raise AppError; the handler in main.py renders it
in the common {"code", "message", "data"} envelope.
"""
from __future__ import annotations


class AppError(Exception):
    """
    Application error

    - code: business error code, distinct per failure
    - message: human readable message
    - status_code: HTTP status (400, 401, 500 ...)

    Example:
        raise AppError(code=401001, message="Invalid webhook signature", status_code=401)
    """

    def __init__(self, *, code: int, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


def invalid_signature() -> AppError:
    return AppError(code=401001, message="Invalid webhook signature", status_code=401)


def webhook_secret_missing() -> AppError:
    # 500 makes Mercado Pago retry once the secret is configured
    return AppError(code=500001, message="Webhook secret not configured", status_code=500)
