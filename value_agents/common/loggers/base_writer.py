from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Mapping, Optional


class Writer(ABC):
    """
    Abstract sink for rows of scalar metrics.

    A row is a flat mapping produced by ``Logger.log``: metric keys such as
    ``"train/loss/q"`` plus the meta keys ``step``, ``wall_time`` and
    ``timestamp``.

    Notes
    -----
    - Implementations raise on failure; suppression is the job of
      :class:`SafeWriter` or of the ``Logger`` strict policy.
    - ``flush()`` and ``close()`` should be idempotent.
    """

    @abstractmethod
    def write(self, row: Mapping[str, float]) -> None:
        """
        Consume one row of scalar metrics.
        """
        raise NotImplementedError

    @abstractmethod
    def flush(self) -> None:
        """
        Push buffered rows to the underlying sink.
        """
        raise NotImplementedError

    @abstractmethod
    def close(self) -> None:
        """
        Release resources held by the writer.
        """
        raise NotImplementedError


class SafeWriter(Writer):
    """
    Wrapper that isolates training from failures of an inner writer.

    Exceptions raised by the wrapped writer are suppressed and counted.

    Parameters
    ----------
    inner : Writer
        Concrete writer to wrap.
    name : str, optional
        Identifier for diagnostics. Defaults to ``inner.__class__.__name__``.

    Attributes
    ----------
    failures : int
        Number of suppressed exceptions.
    last_error : Optional[BaseException]
        Most recently suppressed exception.
    """

    def __init__(self, inner: Writer, *, name: Optional[str] = None) -> None:
        self._inner = inner
        self.name = name or inner.__class__.__name__
        self.failures = 0
        self.last_error: Optional[BaseException] = None

    def _suppress(self, err: Exception) -> None:
        self.failures += 1
        self.last_error = err

    def write(self, row: Mapping[str, float]) -> None:
        try:
            self._inner.write(row)
        except Exception as e:
            self._suppress(e)

    def flush(self) -> None:
        try:
            self._inner.flush()
        except Exception as e:
            self._suppress(e)

    def close(self) -> None:
        try:
            self._inner.close()
        except Exception as e:
            self._suppress(e)
