class ToonmuError(Exception):
    """Base class for errors raised by the generation backend."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ToonmuError):
    """A required submit field is missing or empty."""


class PersistenceError(ToonmuError):
    """The job record could not be written or read."""


class ProviderError(ToonmuError):
    """An image-generation provider failed to return an image."""

    def __init__(self, message: str, provider: str = ""):
        super().__init__(message)
        self.provider = provider


class UploadError(ToonmuError):
    """The generated image could not be stored."""
