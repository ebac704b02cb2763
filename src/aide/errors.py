"""Error taxonomy shared by the clients and services."""


class AideError(Exception):
    """Base class for all aide errors."""


class AuthenticationRequired(AideError):
    """No live session, or the session is expired."""


class CredentialExchangeFailed(AideError):
    """The auth collaborator rejected a password, access or refresh token."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimited(AideError):
    """The completion collaborator answered HTTP 429."""


class PaymentRequired(AideError):
    """The completion collaborator answered HTTP 402."""


class NetworkOrServerError(AideError):
    """Transport failure or a non-2xx response from a collaborator."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DecodeError(AideError):
    """A single stream line could not be decoded. Never fatal."""


class StorageParseError(AideError):
    """Persisted local state could not be parsed. Never fatal."""


class PlatformUnsupported(AideError):
    """A device capability (speech, audio, notifications) is absent."""
