"""Domain-specific exceptions — framework-independent."""


class InvalidArgumentError(ValueError):
    """Raised when a caller omits a required argument (programmer error).

    Input validation failures are never degraded into soft results;
    they surface immediately so the caller can fix the call site.
    """

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ChatProviderError(Exception):
    """Raised when a chat provider returns an error.

    Provider-agnostic — works for OpenRouter, Groq, OpenAI, etc.
    """

    def __init__(self, provider: str, status_code: int, message: str):
        self.provider = provider
        self.status_code = status_code
        self.message = message
        super().__init__(f"[{provider}] {status_code}: {message}")


class EmbeddingProviderError(Exception):
    """Raised when an embedding provider fails to return vectors."""

    def __init__(self, provider: str, status_code: int, message: str):
        self.provider = provider
        self.status_code = status_code
        self.message = message
        super().__init__(f"[{provider}] embeddings {status_code}: {message}")


class CompositionError(Exception):
    """Raised when the LLM returns an unusable SQL composition."""


class SqlGenerationError(Exception):
    """Raised when fresh SQL generation yields no usable statement."""
