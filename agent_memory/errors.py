"""
Error types for the memory engine.

Validation problems are raised synchronously to the caller. Storage
problems come out of the vector store backends. Embedding provider
problems never leave the embedding layer: they are caught there and
downgraded to the local embedding algorithm.
"""


class MemoryEngineError(Exception):
    """Base class for all memory engine errors."""


class ValidationError(MemoryEngineError, ValueError):
    """Invalid input, e.g. empty memory content or a malformed import bundle."""


class StorageError(MemoryEngineError):
    """
    A vector store operation failed.

    Not-found is never a StorageError - stores return None/False instead.
    """

    def __init__(self, message: str, retryable: bool = True, backend: str = ""):
        super().__init__(message)
        self.retryable = retryable
        self.backend = backend

    def __str__(self) -> str:
        prefix = f"[{self.backend}] " if self.backend else ""
        kind = "retryable" if self.retryable else "terminal"
        return f"{prefix}{super().__str__()} ({kind})"


class EmbeddingProviderError(MemoryEngineError):
    """A remote embedding request failed (network, status, payload, timeout)."""
