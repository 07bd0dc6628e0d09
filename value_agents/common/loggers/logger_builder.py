from __future__ import annotations

from typing import Any, Dict, List, Optional

from .base_writer import SafeWriter, Writer
from .csv_writer import CSVWriter
from .jsonl_writer import JSONLWriter
from .logger import Logger
from .tensorboard_writer import TensorBoardWriter


def build_logger(
    *,
    log_dir: str = "./runs",
    exp_name: str = "exp",
    run_id: Optional[str] = None,
    run_name: Optional[str] = None,
    overwrite: bool = False,
    resume: bool = False,
    # backend enable flags
    use_tensorboard: bool = False,
    use_csv: bool = True,
    use_jsonl: bool = True,
    safe_writers: bool = False,
    # backend kwargs
    csv_kwargs: Optional[Dict[str, Any]] = None,
    jsonl_kwargs: Optional[Dict[str, Any]] = None,
    # logger behavior
    console_every: int = 1,
    flush_every: int = 200,
    drop_non_finite: bool = False,
    strict: bool = False,
) -> Logger:
    """
    Construct a :class:`Logger` and attach the selected writer backends.

    The logger is created first since it resolves ``run_dir``; the writers
    are then opened inside that directory.

    Parameters
    ----------
    log_dir, exp_name, run_id, run_name, overwrite, resume
        Run directory resolution, forwarded to :class:`Logger`. With
        ``resume=True`` the directory must already exist.
    use_tensorboard : bool, default=False
        Attach :class:`TensorBoardWriter` (requires the ``tensorboard`` extra).
    use_csv : bool, default=True
        Attach :class:`CSVWriter`.
    use_jsonl : bool, default=True
        Attach :class:`JSONLWriter`.
    safe_writers : bool, default=False
        Wrap each backend in :class:`SafeWriter`.
    csv_kwargs, jsonl_kwargs : dict, optional
        Extra keyword arguments for the CSV / JSONL writers.
    console_every, flush_every, drop_non_finite, strict
        Logger behavior, see :class:`Logger`.

    Returns
    -------
    Logger

    Raises
    ------
    FileNotFoundError
        If ``resume=True`` and the resolved run directory does not exist.
    RuntimeError
        If ``use_tensorboard=True`` but tensorboard is not installed.
    """
    csv_kwargs = dict(csv_kwargs or {})
    jsonl_kwargs = dict(jsonl_kwargs or {})

    logger = Logger(
        log_dir=str(log_dir),
        exp_name=str(exp_name),
        run_id=run_id,
        run_name=run_name,
        overwrite=bool(overwrite),
        resume=bool(resume),
        writers=None,
        console_every=int(console_every),
        flush_every=int(flush_every),
        drop_non_finite=bool(drop_non_finite),
        strict=bool(strict),
    )

    writers: List[Writer] = []
    if use_tensorboard:
        writers.append(TensorBoardWriter(logger.run_dir))
    if use_csv:
        writers.append(CSVWriter(logger.run_dir, **csv_kwargs))
    if use_jsonl:
        writers.append(JSONLWriter(logger.run_dir, **jsonl_kwargs))

    if safe_writers:
        writers = [SafeWriter(w) for w in writers]

    logger.add_writers(writers)
    return logger
