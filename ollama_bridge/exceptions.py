class BridgeError(Exception):
    """Base class for every error raised while serving a conversion."""


class InvalidRequestError(BridgeError):
    """Raised when a conversion request is rejected before any upstream call."""


class UpstreamError(BridgeError):
    """Raised when the Ollama server fails a call."""
    def __init__(self, message: str, model: str | None = None, status_code: int | None = None):
        self.model = model
        self.status_code = status_code
        super().__init__(message)


class ModelNotFoundError(UpstreamError):
    """Raised when Ollama answers 404 for the requested model."""
    def __init__(self, model: str):
        super().__init__(f"Model '{model}' not found.", model=model, status_code=404)


class UpstreamUnavailableError(UpstreamError):
    """Raised when Ollama cannot be reached (connection refused, timeout)."""


class UpstreamStreamError(UpstreamError):
    """Raised when the transport fails after streaming has started."""
