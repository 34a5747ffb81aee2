"""Error taxonomy shared by the store, the services and the API layer."""


class MagdaError(Exception):
    """Base class for every error raised by the record store."""


class StorageUnavailable(MagdaError):
    """The secure store cannot be read or written."""


class DecryptionError(MagdaError):
    """A blob is malformed, foreign or was encrypted under another key."""


class ValidationError(MagdaError):
    """Input was rejected before any mutation took place."""

    def __init__(self, message: str, errors: list[dict] | None = None):
        super().__init__(message)
        self.errors = errors or []


class EnrichmentFailure(MagdaError):
    """The AI collaborator failed or timed out."""


class NotFound(MagdaError):
    """A record looked up by id does not exist for the account."""


class AuthenticationError(MagdaError):
    """Credentials were rejected or no session is active."""


class ImportFailure(MagdaError):
    """A FHIR server could not be reached or returned an unusable response."""
