# calendar_backend/exceptions.py
"""Error taxonomy shared by the service layer and the HTTP boundary."""


class AppError(Exception):
    """Base for errors the HTTP layer knows how to turn into a response."""

    status_code = 500
    public_message = "Internal Server Error"


class ConfigurationError(AppError):
    """Required settings are missing. Fatal at startup."""


class AuthenticationError(AppError):
    """A login attempt failed. Details are logged, never sent to the client."""

    public_message = "Authentication failed"


class ExchangeError(AuthenticationError):
    """The authorization code could not be exchanged for tokens."""


class VerificationError(AuthenticationError):
    """The identity token failed signature, issuer, audience or expiry checks."""


class ClaimsError(AuthenticationError):
    """The verified identity token lacks a subject or an email."""


class Unauthorized(AppError):
    status_code = 401
    public_message = "Unauthorized"


class ValidationError(AppError):
    """Bad client input. The message is returned as-is."""

    status_code = 400

    @property
    def public_message(self) -> str:  # type: ignore[override]
        return str(self)


class UserNotFound(AppError):
    """No stored credentials for an identity that was already verified."""

    def __init__(self, email: str):
        super().__init__(f"user not found: {email}")
        self.email = email


class ExternalAPIError(AppError):
    """The calendar provider failed for a reason other than an expired token."""


class EventCreationError(ExternalAPIError):
    public_message = "Failed to create event"


class EventListingError(ExternalAPIError):
    public_message = "Failed to list events"


class TokenRefreshError(AppError):
    """Exchanging the refresh token for a new access token failed."""
