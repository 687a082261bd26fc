"""
Application errors

Every failure the services raise maps to one HTTP status code. The API layer
turns them into a JSON body of the form {"error": message}.
"""


class AppError(Exception):
    status_code = 500
    message = "An unexpected error occurred"

    def __init__(self, message=None):
        self.message = message or self.message
        super().__init__(self.message)


class ValidationError(AppError):
    status_code = 400
    message = "Invalid request"


class InvalidOrExpiredToken(ValidationError):
    message = "Invalid or expired token"


class AuthError(AppError):
    status_code = 401
    message = "Unauthorized"


class InvalidCredentials(AuthError):
    # Same message whether the email is unknown or the password is wrong
    message = "Invalid email or password"


class PermissionDenied(AppError):
    status_code = 403
    message = "Forbidden"


class NotFoundError(AppError):
    status_code = 404
    message = "Not found"


class ConflictError(AppError):
    status_code = 409
    message = "Conflict"


class DuplicateEmail(ConflictError):
    message = "User with this email already exists"


class EmailTaken(ConflictError):
    message = "Email is already in use by another account"


class InternalError(AppError):
    status_code = 500
