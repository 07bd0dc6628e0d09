from __future__ import annotations

import json
import os
import time
from collections import defaultdict
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

import numpy as np

from ..utils.common_utils import _to_scalar
from ..utils.logger_utils import META_KEYS, _make_run_dir, _runtime_metadata


_AGGREGATORS: Dict[str, Callable[[np.ndarray], Any]] = {
    "mean": np.mean,
    "min": np.min,
    "max": np.max,
    "std": np.std,
}

# Shown first on the console when present in a row.
_CONSOLE_KEYS = (
    "train/loss/q",
    "train/q/mean",
    "train/target/mean",
    "train/lr",
    "policy/q_max",
)


class Logger:
    """
    Scalar metric logger shared by the value agents.

    The logger turns metric mappings into flat rows and fans them out to
    writer backends. It handles:

    - the per-run directory (``run_dir``), created on construction
    - the step of each row (explicit, callable, or a bound agent)
    - prefixing and per-key throttling
    - a ``record`` buffer reduced by ``dump``
    - console printing and periodic flushing

    Parameters
    ----------
    log_dir : str, default="./runs"
        Root directory for runs.
    exp_name : str, default="exp"
        Experiment subdirectory under ``log_dir``.
    run_id, run_name : str, optional
        Run identifier; ``run_id`` wins over ``run_name``. A timestamped id is
        generated when both are omitted.
    overwrite : bool, default=False
        Reuse an existing run directory instead of suffixing ``_1``, ``_2``...
    resume : bool, default=False
        Append to an existing run directory.
    writers : Iterable[Writer], optional
        Initial backends; more can be attached with ``add_writer(s)``.
    console_every : int, default=1
        Print every N ``log()`` calls; ``<= 0`` disables printing.
    flush_every : int, default=200
        Flush writers every N ``log()`` calls; ``<= 0`` disables it.
    drop_non_finite : bool, default=False
        Discard NaN/Inf values.
    strict : bool, default=False
        Re-raise writer failures instead of collecting them in ``errors``.

    Attributes
    ----------
    run_dir : str
    errors : List[str]
        Writer failures seen in non-strict mode.

    Notes
    -----
    A row's step is, in order: the ``step`` argument, the ``set_step_fn``
    callable, the bound agent's ``update_counter``, then 0.
    """

    def __init__(
        self,
        *,
        log_dir: str = "./runs",
        exp_name: str = "exp",
        run_id: Optional[str] = None,
        run_name: Optional[str] = None,
        overwrite: bool = False,
        resume: bool = False,
        writers: Optional[Iterable[Any]] = None,
        console_every: int = 1,
        flush_every: int = 200,
        drop_non_finite: bool = False,
        strict: bool = False,
    ) -> None:
        self.run_dir = _make_run_dir(
            log_dir=log_dir,
            exp_name=exp_name,
            run_id=run_id,
            run_name=run_name,
            overwrite=bool(overwrite),
            resume=bool(resume),
        )
        os.makedirs(self.run_dir, exist_ok=True)

        self.strict = bool(strict)
        self.errors: List[str] = []
        self.console_every = int(console_every)
        self.flush_every = int(flush_every)
        self.drop_non_finite = bool(drop_non_finite)

        self._t0 = time.time()
        self._n_logged = 0
        self._step_source: Optional[Callable[[], int]] = None
        self._periods: Dict[str, int] = {}
        self._pending: Dict[str, List[float]] = defaultdict(list)
        self._writers: List[Any] = [] if writers is None else list(writers)

        try:
            self.dump_metadata()
        except (OSError, TypeError, ValueError) as e:
            self._report(e, "dump_metadata")

    def __enter__(self) -> "Logger":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # =============================================================================
    # Step source
    # =============================================================================
    def set_step_fn(self, fn: Optional[Callable[[], int]]) -> None:
        """Use ``fn()`` as the step when none is passed (None to disable)."""
        self._step_source = fn

    def bind_agent(self, agent: Any) -> None:
        """
        Take the step from ``agent.update_counter`` when none is passed.
        """
        self._step_source = lambda: int(getattr(agent, "update_counter", 0))

    def _resolve_step(self, step: Optional[int]) -> int:
        if step is not None:
            return int(step)
        if self._step_source is None:
            return 0
        try:
            return int(self._step_source())
        except (TypeError, ValueError):
            return 0

    # =============================================================================
    # Keys and values
    # =============================================================================
    @staticmethod
    def _clean(key: Any) -> str:
        return str(key).strip().replace("\\", "/").strip("/")

    def _full_key(self, prefix: str, key: Any) -> str:
        head, tail = self._clean(prefix), self._clean(key)
        return tail if not head else f"{head}/{tail}"

    def set_key_every(self, mapping: Mapping[str, int]) -> None:
        """
        Throttle full keys: a key is kept only when ``step % period == 0``.

        Parameters
        ----------
        mapping : Mapping[str, int]
            Full metric key -> period. A period ``<= 0`` removes the throttle.
        """
        for key, period in mapping.items():
            name, n = self._clean(key), int(period)
            if n > 0:
                self._periods[name] = n
            else:
                self._periods.pop(name, None)

    def _due(self, name: str, step: int) -> bool:
        n = self._periods.get(name)
        return n is None or step % n == 0

    def _scalar(self, value: Any) -> Optional[float]:
        v = _to_scalar(value)
        if v is None:
            return None
        if self.drop_non_finite and not np.isfinite(v):
            return None
        return float(v)

    # =============================================================================
    # Logging
    # =============================================================================
    def log(
        self,
        metrics: Mapping[str, Any],
        step: Optional[int] = None,
        *,
        prefix: str = "",
    ) -> Dict[str, float]:
        """
        Build one row from ``metrics`` and send it to every writer.

        Parameters
        ----------
        metrics : Mapping[str, Any]
            Values are reduced with ``_to_scalar``; anything else is skipped.
        step : int, optional
            Row step; resolved from the step source when omitted.
        prefix : str, default=""
            Joined to every key with "/" (e.g. "train").

        Returns
        -------
        row : Dict[str, float]
            The dispatched row, meta keys included.
        """
        s = self._resolve_step(step)
        self._n_logged += 1

        row: Dict[str, float] = {}
        for key, value in metrics.items():
            name = self._full_key(prefix, key)
            v = self._scalar(value)
            if v is not None and self._due(name, s):
                row[name] = v

        now = time.time()
        row.update(step=float(s), wall_time=float(now - self._t0), timestamp=float(now))

        self._broadcast("write", row)

        if self.console_every > 0 and self._n_logged % self.console_every == 0:
            self._print_console(row)
        if self.flush_every > 0 and self._n_logged % self.flush_every == 0:
            self.flush()
        return row

    def record(self, metrics: Mapping[str, Any], *, prefix: str = "") -> None:
        """
        Buffer values for the next ``dump()``; nothing is written.
        """
        for key, value in metrics.items():
            v = self._scalar(value)
            if v is not None:
                self._pending[self._full_key(prefix, key)].append(v)

    def dump(
        self,
        step: Optional[int] = None,
        *,
        prefix: str = "",
        agg: str = "mean",
        clear: bool = True,
    ) -> Optional[Dict[str, float]]:
        """
        Reduce buffered values per key and ``log()`` the result.

        Parameters
        ----------
        step : int, optional
        prefix : str, default=""
            Extra prefix for the reduced keys.
        agg : {"mean", "min", "max", "std"}, default="mean"
        clear : bool, default=True
            Drop the buffer afterwards.

        Returns
        -------
        row : Optional[Dict[str, float]]
            None when nothing was buffered.

        Raises
        ------
        ValueError
            If ``agg`` is not one of the supported reductions.
        """
        reduce = _AGGREGATORS.get(str(agg).lower().strip())
        if reduce is None:
            raise ValueError(f"agg must be one of {sorted(_AGGREGATORS)}, got {agg!r}")

        reduced = {
            key: float(reduce(np.asarray(values, dtype=np.float64)))
            for key, values in self._pending.items()
            if values
        }
        if clear:
            self._pending.clear()

        return self.log(reduced, step=step, prefix=prefix) if reduced else None

    # =============================================================================
    # Run files
    # =============================================================================
    def _write_json(self, filename: str, payload: Mapping[str, Any]) -> None:
        with open(os.path.join(self.run_dir, filename), "w", encoding="utf-8") as f:
            json.dump(dict(payload), f, indent=2, ensure_ascii=False, default=str)

    def dump_config(self, config: Mapping[str, Any], filename: str = "config.json") -> None:
        """Write ``config`` to ``run_dir/filename`` (non-JSON values via ``str``)."""
        self._write_json(filename, config)

    def dump_metadata(self, filename: str = "metadata.json") -> None:
        """Write host, interpreter, torch/CUDA and git details to ``run_dir/filename``."""
        self._write_json(filename, _runtime_metadata(self.run_dir, self._t0))

    # =============================================================================
    # Writers
    # =============================================================================
    def add_writer(self, writer: Any) -> None:
        self._writers.append(writer)

    def add_writers(self, writers: Iterable[Any]) -> None:
        self._writers.extend(writers)

    @property
    def writers(self) -> List[Any]:
        return list(self._writers)

    def _report(self, err: BaseException, context: str) -> None:
        self.errors.append(f"[{type(self).__name__}] {context}: {type(err).__name__}: {err}")
        if self.strict:
            raise err

    def _broadcast(self, method: str, *args: Any) -> None:
        for w in self._writers:
            try:
                getattr(w, method)(*args)
            except Exception as e:
                self._report(e, f"writer.{method}({type(w).__name__})")

    def flush(self) -> None:
        self._broadcast("flush")

    def close(self) -> None:
        """Flush, then close every writer even when flushing fails."""
        try:
            self.flush()
        finally:
            self._broadcast("close")

    # =============================================================================
    # Console
    # =============================================================================
    @staticmethod
    def _print_console(row: Mapping[str, float]) -> None:
        shown = [f"{k}={row[k]:.4g}" for k in _CONSOLE_KEYS if k in row]
        if not shown:
            shown = [f"{k}={v:.4g}" for k, v in row.items() if k not in META_KEYS][:6]
        print(f"[step={int(row.get('step', 0))} | t={row.get('wall_time', 0.0):.1f}s] " + " ".join(shown))
