from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Dict, Union


class LossFunction(str, Enum):
    """
    Elementwise regression loss used by the value agents.

    Members
    -------
    HUBER
        Smooth L1 with threshold 1.0:
        ``0.5 * d^2`` if ``|d| <= 1`` else ``|d| - 0.5``.
    SQUARED
        Plain squared error ``d^2`` (no 1/2 factor).
    """

    HUBER = "huber"
    SQUARED = "squared"

    @classmethod
    def coerce(cls, value: Union[str, "LossFunction"]) -> "LossFunction":
        """
        Resolve a loss identifier (case-insensitive).

        Accepted aliases: ``"huber"``, ``"smooth_l1"``, ``"squared"``, ``"mse"``.
        """
        if isinstance(value, cls):
            return value
        name = str(value).lower().strip().replace("-", "_")
        if name in ("huber", "smooth_l1"):
            return cls.HUBER
        if name in ("squared", "mse", "l2"):
            return cls.SQUARED
        raise ValueError(f"Unknown loss_function: {value!r}")


@dataclass(frozen=True)
class AgentConfig:
    """
    Immutable hyperparameters shared by the DQN and QR-DQN agents.

    Parameters
    ----------
    teacher_update_freq : int, default=1000
        Number of ``update`` calls between teacher snapshots. The teacher is
        replaced whenever ``update_counter % teacher_update_freq == 0``.
    n_step : int, default=1
        Return horizon of the stored transitions. Bootstrap values are
        discounted by ``gamma ** n_step``.
    double_dqn : bool, default=True
        Select the bootstrap action with the online model and evaluate it
        with the teacher.
    loss_function : LossFunction or str, default=LossFunction.HUBER
        Elementwise loss kind.
    max_grad_norm : float, default=0.0
        Global gradient-norm clip. 0 disables clipping.

    Raises
    ------
    ValueError
        If any field violates its range at construction.
    """

    teacher_update_freq: int = 1000
    n_step: int = 1
    double_dqn: bool = True
    loss_function: LossFunction = LossFunction.HUBER
    max_grad_norm: float = 0.0

    def __post_init__(self) -> None:
        # frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, "teacher_update_freq", int(self.teacher_update_freq))
        object.__setattr__(self, "n_step", int(self.n_step))
        object.__setattr__(self, "double_dqn", bool(self.double_dqn))
        object.__setattr__(self, "loss_function", LossFunction.coerce(self.loss_function))
        object.__setattr__(self, "max_grad_norm", float(self.max_grad_norm))

        if self.teacher_update_freq < 1:
            raise ValueError(f"teacher_update_freq must be >= 1, got {self.teacher_update_freq}")
        if self.n_step < 1:
            raise ValueError(f"n_step must be >= 1, got {self.n_step}")
        if self.max_grad_norm < 0.0:
            raise ValueError(f"max_grad_norm must be >= 0, got {self.max_grad_norm}")

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view (enum replaced by its value)."""
        d = asdict(self)
        d["loss_function"] = self.loss_function.value
        return d
