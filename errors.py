"""Error taxonomy shared by the services and the HTTP layer.

``AppError`` subclasses carry the status code and the generic message the
client sees. The remaining classes never leave the process: callers
translate them into one of the ``AppError`` variants.
"""

from typing import Optional


class AppError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.message)
        if message:
            self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message}


class ValidationError(AppError, ValueError):
    status_code = 400
    message = "Invalid request"


class MissingPeriod(ValidationError):
    message = "Provide 'year' or 'year-month' (e.g., year=2025 or year-month=2025-01)"


class AuthError(AppError):
    status_code = 401
    message = "Authentication failed"


class InvalidCredentials(AuthError):
    message = "Invalid credentials"


class Unauthenticated(AuthError):
    message = "Authentication required"


class UserExists(AuthError):
    status_code = 409
    message = "User already exists"


class NotFoundError(AppError, LookupError):
    status_code = 404
    message = "Not found"


class StorageError(AppError):
    status_code = 500
    message = "Internal server error"


class CredentialError(Exception):
    pass


class TokenError(Exception):
    pass


class TokenMalformed(TokenError):
    pass


class TokenExpired(TokenError):
    pass
