from __future__ import annotations

import math
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from torch.optim import Optimizer
from torch.optim.lr_scheduler import (
    ExponentialLR,
    LambdaLR,
    LRScheduler,
    MultiStepLR,
    StepLR,
)


# =============================================================================
# Public API
# =============================================================================
def build_scheduler(
    optimizer: Optimizer,
    *,
    name: str = "none",
    total_steps: int = 0,
    warmup_steps: int = 0,
    min_lr_ratio: float = 0.0,
    poly_power: float = 1.0,
    step_size: int = 1000,
    gamma: float = 0.99,
    milestones: Sequence[int] = (),
) -> Optional[LRScheduler]:
    """
    Construct a per-update learning-rate schedule.

    The value agents call ``scheduler.step()`` exactly once after every
    ``optimizer.step()``, so all horizons below are counted in agent updates.

    Parameters
    ----------
    optimizer : torch.optim.Optimizer
        Optimizer whose param-group learning rates are scheduled.
    name : str, default="none"
        Case-insensitive identifier ("-" and " " map to "_"):

        - "none" / "constant": no schedule, returns None
        - "linear": optional linear warmup, then linear decay to ``min_lr_ratio``
        - "cosine": optional warmup, then cosine decay to ``min_lr_ratio``
        - "warmup_cosine": "cosine" with mandatory ``warmup_steps > 0``
        - "poly": optional warmup, then ``(1 - t) ** poly_power`` decay
        - "step": StepLR every ``step_size`` by ``gamma``
        - "multistep": MultiStepLR at ``milestones`` by ``gamma``
        - "exponential": ExponentialLR by ``gamma`` every update
    total_steps : int, default=0
        Horizon for the LambdaLR-based schedules (required > 0 for them).
    warmup_steps : int, default=0
        Warmup length, clamped to ``total_steps``.
    min_lr_ratio : float, default=0.0
        Final multiplier of the base LR, in [0, 1].
    poly_power : float, default=1.0
        Exponent for "poly" (> 0).
    step_size : int, default=1000
        StepLR period (> 0).
    gamma : float, default=0.99
        Decay factor for step/multistep/exponential (> 0).
    milestones : Sequence[int], default=()
        MultiStepLR milestones; deduplicated and sorted.

    Returns
    -------
    scheduler : Optional[torch.optim.lr_scheduler.LRScheduler]
        None for a constant learning rate.

    Raises
    ------
    ValueError
        On an unknown name or invalid hyperparameters.
    """
    if optimizer is None:
        raise ValueError("optimizer must not be None")

    sched = _normalize_scheduler_name(name)
    if sched in ("none", "constant"):
        return None

    min_lr_ratio_f = float(min_lr_ratio)
    if not (0.0 <= min_lr_ratio_f <= 1.0):
        raise ValueError(f"min_lr_ratio must be in [0, 1], got: {min_lr_ratio_f}")

    warmup_steps_i = int(warmup_steps)
    if warmup_steps_i < 0:
        raise ValueError(f"warmup_steps must be >= 0, got: {warmup_steps_i}")

    # ------------------------------------------------------------------
    # LambdaLR-based schedules
    # ------------------------------------------------------------------
    if sched in ("linear", "cosine", "warmup_cosine", "poly"):
        total_steps_i = int(total_steps)
        if total_steps_i <= 0:
            raise ValueError(f"{sched} scheduler requires total_steps > 0")
        warmup_steps_i = min(warmup_steps_i, total_steps_i)

        if sched == "warmup_cosine" and warmup_steps_i <= 0:
            raise ValueError("warmup_cosine requires warmup_steps > 0")

        if sched == "linear":
            decay: Callable[[float], float] = lambda t: 1.0 - t
        elif sched == "poly":
            power_f = float(poly_power)
            if power_f <= 0.0:
                raise ValueError(f"poly_power must be > 0, got: {power_f}")
            decay = lambda t: (1.0 - t) ** power_f
        else:
            decay = lambda t: 0.5 * (1.0 + math.cos(math.pi * t))

        fn = _warmup_then_decay(
            total_steps=total_steps_i,
            warmup_steps=warmup_steps_i,
            min_lr_ratio=min_lr_ratio_f,
            decay=decay,
        )
        return LambdaLR(optimizer, lr_lambda=fn)

    # ------------------------------------------------------------------
    # Classic schedules
    # ------------------------------------------------------------------
    gamma_f = float(gamma)
    if sched in ("step", "multistep", "exponential") and gamma_f <= 0.0:
        raise ValueError(f"gamma must be > 0, got: {gamma_f}")

    if sched == "step":
        step_size_i = int(step_size)
        if step_size_i <= 0:
            raise ValueError(f"step_size must be > 0, got: {step_size_i}")
        return StepLR(optimizer, step_size=step_size_i, gamma=gamma_f)

    if sched == "multistep":
        ms = sorted({int(m) for m in milestones})
        if len(ms) == 0:
            raise ValueError("multistep requires non-empty milestones")
        return MultiStepLR(optimizer, milestones=ms, gamma=gamma_f)

    if sched == "exponential":
        return ExponentialLR(optimizer, gamma=gamma_f)

    raise ValueError(f"Unknown scheduler name: {name!r}")


def scheduler_state_dict(scheduler: Optional[LRScheduler]) -> Dict[str, Any]:
    """
    Checkpoint-ready scheduler state: ``{}`` when there is no scheduler.
    """
    return {} if scheduler is None else scheduler.state_dict()


def load_scheduler_state_dict(scheduler: Optional[LRScheduler], state: Mapping[str, Any]) -> None:
    """
    Restore scheduler state. No-op when ``scheduler`` is None or ``state`` is empty.
    """
    if scheduler is None or not state:
        return
    scheduler.load_state_dict(dict(state))


# =============================================================================
# Internal helpers
# =============================================================================
def _normalize_scheduler_name(name: str) -> str:
    return str(name).lower().strip().replace("-", "_").replace(" ", "_")


def _warmup_then_decay(
    *,
    total_steps: int,
    warmup_steps: int,
    min_lr_ratio: float,
    decay: Callable[[float], float],
) -> Callable[[int], float]:
    """
    LambdaLR multiplier: linear warmup, then ``decay(t)`` rescaled to
    ``[min_lr_ratio, 1]``.

    Parameters
    ----------
    total_steps : int
        Horizon (number of scheduler steps).
    warmup_steps : int
        Warmup length, ``0 <= warmup_steps <= total_steps``.
    min_lr_ratio : float
        Multiplier reached at ``step >= total_steps``.
    decay : Callable[[float], float]
        Maps progress ``t`` in [0, 1] to a factor in [0, 1] with
        ``decay(0) == 1``.
    """

    def f(step: int) -> float:
        s = max(0, int(step))

        # warmup: 1/W, 2/W, ..., 1.0
        if warmup_steps > 0 and s < warmup_steps:
            return (s + 1) / float(warmup_steps)

        denom = max(1, total_steps - warmup_steps)
        t = min(1.0, (s - warmup_steps) / float(denom))
        return min_lr_ratio + (1.0 - min_lr_ratio) * decay(t)

    return f
