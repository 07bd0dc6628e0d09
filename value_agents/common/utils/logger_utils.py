from __future__ import annotations

import csv
import json
import os
import socket
import subprocess
import sys
import uuid
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, TextIO, Tuple

import torch as th


# Keys injected by Logger.log into every row; writers index by them rather
# than plotting them.
META_KEYS: Tuple[str, str, str] = ("step", "wall_time", "timestamp")


# =============================================================================
# Run directory utilities
# =============================================================================
def _generate_run_id() -> str:
    """
    Filesystem-safe run id ``"{YYYY-mm-dd_HH-MM-SS}_{8-hex}"``.
    """
    ts = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    return f"{ts}_{uuid.uuid4().hex[:8]}"


def _make_run_dir(
    log_dir: str,
    exp_name: str,
    *,
    run_id: Optional[str] = None,
    run_name: Optional[str] = None,
    overwrite: bool = False,
    resume: bool = False,
    require_resume_exists: bool = True,
) -> str:
    """
    Resolve ``{log_dir}/{exp_name}/{rid}`` for a training run.

    Parameters
    ----------
    log_dir : str
        Root logging directory.
    exp_name : str
        Experiment name.
    run_id, run_name : Optional[str]
        Identifier precedence: ``run_id``, then ``run_name``, then a generated id.
    overwrite : bool, default=False
        Reuse the path even if it exists. Otherwise a fresh run picks the
        first free ``{path}_{k}``.
    resume : bool, default=False
        Return the computed path as-is (append to an existing run).
    require_resume_exists : bool, default=True
        With ``resume=True``, raise if the directory is missing.

    Returns
    -------
    run_dir : str
        Resolved (not yet created) directory path.

    Raises
    ------
    FileNotFoundError
        If resuming a run directory that does not exist.
    """
    base = os.path.join(str(log_dir), str(exp_name))
    rid = run_id or run_name or _generate_run_id()
    path = os.path.join(base, str(rid))

    if resume:
        if require_resume_exists and (not os.path.exists(path)):
            raise FileNotFoundError(f"resume=True but run_dir does not exist: {path}")
        return path

    if overwrite or (not os.path.exists(path)):
        return path

    i = 1
    while os.path.exists(f"{path}_{i}"):
        i += 1
    return f"{path}_{i}"


# =============================================================================
# Metric row helpers
# =============================================================================
def _split_meta(row: Mapping[str, Any]) -> Tuple[Dict[str, float], Dict[str, float]]:
    """
    Split a row into ``(meta, metrics)`` using ``META_KEYS``.
    """
    meta = {k: float(row[k]) for k in META_KEYS if k in row}
    metrics = {str(k): float(v) for k, v in row.items() if k not in META_KEYS}
    return meta, metrics


def _get_step(row: Mapping[str, Any]) -> int:
    """
    Integer ``step`` of a row, 0 if absent or not castable.
    """
    try:
        return int(float(row.get("step", 0)))
    except (TypeError, ValueError):
        return 0


def _json_dumps(obj: Any) -> str:
    """JSON with readable unicode and ``default=str`` for odd values."""
    return json.dumps(obj, ensure_ascii=False, default=str)


# =============================================================================
# Filesystem helpers for writers
# =============================================================================
def _open_append(
    path: str,
    *,
    newline: Optional[str] = None,
    encoding: str = "utf-8",
) -> TextIO:
    """
    Open ``path`` in append mode, creating the parent directory if needed.

    Notes
    -----
    The caller owns the returned handle. For CSV pass ``newline=""``.
    """
    dirpath = os.path.dirname(path)
    if dirpath:
        os.makedirs(dirpath, exist_ok=True)
    return open(path, "a", newline=newline, encoding=encoding)


def _safe_call(obj: Optional[Any], method: str) -> None:
    """
    Best-effort ``obj.method()``; never raises.

    Used for flush/close on writer handles, where a failure must not
    interrupt training.
    """
    if obj is None:
        return
    try:
        fn = getattr(obj, method, None)
        if callable(fn):
            fn()
    except Exception:
        pass


def _safe_file_size(f: TextIO) -> int:
    """Size of an open file via seek/tell (pointer left at EOF), 0 on failure."""
    try:
        f.seek(0, os.SEEK_END)
        return int(f.tell())
    except (OSError, ValueError):
        return 0


def _read_csv_header(*, path: str, encoding: str = "utf-8") -> Optional[List[str]]:
    """
    First row of a CSV file, or None if missing/unreadable/empty.
    """
    try:
        with open(path, "r", newline="", encoding=encoding) as rf:
            header = next(csv.reader(rf), None)
    except (OSError, csv.Error, UnicodeDecodeError):
        return None
    if not header:
        return None
    return [str(h) for h in header]


# =============================================================================
# Run metadata
# =============================================================================
def _git(*args: str) -> Optional[str]:
    """Output of ``git <args>`` in the working directory, or None on failure."""
    try:
        out = subprocess.check_output(("git",) + args, stderr=subprocess.DEVNULL)
    except (OSError, subprocess.CalledProcessError):
        return None
    return out.decode("utf-8", errors="ignore").strip()


def _git_info() -> Dict[str, Any]:
    """
    ``{"commit", "branch", "dirty"}`` of the enclosing work tree, ``{}`` outside one.
    """
    if _git("rev-parse", "--is-inside-work-tree") != "true":
        return {}

    info: Dict[str, Any] = {}
    for key, args in (("commit", ("rev-parse", "HEAD")), ("branch", ("rev-parse", "--abbrev-ref", "HEAD"))):
        value = _git(*args)
        if value is not None:
            info[key] = value

    status = _git("status", "--porcelain")
    if status is not None:
        info["dirty"] = bool(status)
    return info


def _runtime_metadata(run_dir: str, start_time: float) -> Dict[str, Any]:
    """
    JSON-ready description of the process that owns a run directory.
    """
    meta: Dict[str, Any] = {
        "run_dir": run_dir,
        "start_time_unix": float(start_time),
        "start_time_iso": datetime.fromtimestamp(start_time).isoformat(),
        "host": socket.gethostname(),
        "pid": os.getpid(),
        "python": " ".join(sys.version.split()),
        "platform": sys.platform,
        "torch": str(th.__version__),
        "cuda_available": bool(th.cuda.is_available()),
    }
    if meta["cuda_available"]:
        meta["cuda_devices"] = [th.cuda.get_device_name(i) for i in range(th.cuda.device_count())]
    meta["git"] = _git_info()
    return meta
