"""Custom exception classes for chat-search."""


class ChatSearchError(Exception):
    """Base exception for all chat-search errors."""
    pass


class ValidationError(ChatSearchError):
    """Raised when input validation fails."""
    pass


class ConfigurationError(ChatSearchError):
    """Raised when configuration is invalid."""
    pass


class EmbeddingError(ChatSearchError):
    """Raised when embedding generation fails."""
    pass


class StorageError(ChatSearchError):
    """Raised when corpus store operations fail."""
    pass


class RetrievalError(ChatSearchError):
    """Raised when hybrid retrieval fails."""
    pass


class IngestionError(ChatSearchError):
    """Raised when an ingestion step fails."""
    pass


class SessionParseError(IngestionError):
    """Raised when a line cannot be parsed into a session."""

    def __init__(self, message: str, line_number: int = 0):
        super().__init__(message)
        self.line_number = line_number
