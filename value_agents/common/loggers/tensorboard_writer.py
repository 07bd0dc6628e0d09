from __future__ import annotations

from typing import Mapping

from .base_writer import Writer
from ..utils.logger_utils import _get_step, _split_meta

try:
    from torch.utils.tensorboard import SummaryWriter  # type: ignore
except ImportError:  # pragma: no cover
    SummaryWriter = None  # type: ignore[assignment]


class TensorBoardWriter(Writer):
    """
    TensorBoard backend: one scalar per metric key.

    The global step is the row's ``step`` meta key, so all backends index the
    same row by the same step. Meta keys themselves are not plotted.

    Parameters
    ----------
    run_dir : str
        Directory for the event files.

    Raises
    ------
    RuntimeError
        If ``torch.utils.tensorboard`` cannot be imported (the ``tensorboard``
        package is not installed).
    """

    def __init__(self, run_dir: str) -> None:
        if SummaryWriter is None:
            raise RuntimeError("TensorBoard is not available (torch.utils.tensorboard missing).")
        self._tb = SummaryWriter(log_dir=run_dir)

    def write(self, row: Mapping[str, float]) -> None:
        step = _get_step(row)
        _, metrics = _split_meta(row)

        for k, v in metrics.items():
            self._tb.add_scalar(str(k), float(v), global_step=int(step))

    def flush(self) -> None:
        self._tb.flush()

    def close(self) -> None:
        self._tb.close()
