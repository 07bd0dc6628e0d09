"""
Error taxonomy for agent persistence and diagnostics.

All errors carry the failing operation and, where relevant, the path, and are
raised with the underlying cause chained (``raise ... from err``).
"""

from __future__ import annotations


class AgentError(RuntimeError):
    """Base class for recoverable agent failures surfaced to the training loop."""


class CheckpointIOError(AgentError, OSError):
    """Directory/file creation, open, read or write failure during save/load."""

    def __init__(self, operation: str, path: str, reason: str = "") -> None:
        self.operation = str(operation)
        self.path = str(path)
        msg = f"{self.operation} failed for {self.path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class SerializationError(AgentError):
    """Artifact encode/decode or state restore failure."""

    def __init__(self, operation: str, path: str, reason: str = "") -> None:
        self.operation = str(operation)
        self.path = str(path)
        msg = f"{self.operation} failed for {self.path}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class TensorConversionError(AgentError):
    """Failure extracting raw numbers from a computed tensor."""
