from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple, Union

from .utils.common_utils import _normalize_shape


# =============================================================================
# Observation space
# =============================================================================
@dataclass(frozen=True)
class ObservationSpace:
    """
    Fixed tensor shape of observations, batch slot included.

    Parameters
    ----------
    shape : Sequence[int]
        Full tensor shape ``(batch, d1, ..., dk)``. Index 0 is the batch slot
        and is the only dimension callers may substitute (see ``with_batch``).
        Typically constructed with batch 1, e.g. ``ObservationSpace((1, 4))``.

    Raises
    ------
    ValueError
        If ``shape`` is empty or any dimension is not positive.
    """

    shape: Tuple[int, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "shape", _normalize_shape(self.shape, name="ObservationSpace.shape"))

    @property
    def rank(self) -> int:
        return len(self.shape)

    @property
    def sample_shape(self) -> Tuple[int, ...]:
        """Per-sample shape (everything after the batch slot)."""
        return self.shape[1:]

    @property
    def flat_dim(self) -> int:
        """Number of scalars in one observation."""
        n = 1
        for d in self.sample_shape:
            n *= int(d)
        return n

    def with_batch(self, batch_size: int) -> Tuple[int, ...]:
        """
        Return the shape with the batch slot replaced by ``batch_size``.

        Raises
        ------
        ValueError
            If ``batch_size <= 0``.
        """
        b = int(batch_size)
        if b <= 0:
            raise ValueError(f"batch_size must be > 0, got {b}")
        return (b,) + self.shape[1:]


# =============================================================================
# Action space
# =============================================================================
@dataclass(frozen=True)
class Discrete:
    """
    Finite action set ``{0, ..., n - 1}``.

    Raises
    ------
    ValueError
        If ``n <= 0``.
    """

    n: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "n", int(self.n))
        if self.n <= 0:
            raise ValueError(f"Discrete action count must be > 0, got {self.n}")

    def contains(self, index: int) -> bool:
        return 0 <= int(index) < self.n


# Only discrete actions are supported today.
ActionSpace = Discrete


@dataclass(frozen=True)
class DiscreteAction:
    """
    Action selected by an agent for a ``Discrete`` action space.

    ``int(action)`` yields the index, so the value can be passed straight to
    environments expecting an integer.

    Raises
    ------
    ValueError
        If ``index < 0``. The upper bound is checked against a ``Discrete``
        space where one is known (``Discrete.contains``, the batcher).
    """

    index: int

    def __post_init__(self) -> None:
        object.__setattr__(self, "index", int(self.index))
        if self.index < 0:
            raise ValueError(f"action index must be >= 0, got {self.index}")

    def __int__(self) -> int:
        return self.index

    def __index__(self) -> int:
        return self.index


Action = DiscreteAction
ActionLike = Union[int, DiscreteAction]


def observation_space(shape: Sequence[int]) -> ObservationSpace:
    """Shorthand for ``ObservationSpace(tuple(shape))``."""
    return ObservationSpace(tuple(int(d) for d in shape))


def single_observation_space(sample_shape: Union[int, Sequence[int]]) -> ObservationSpace:
    """
    Observation space with batch slot 1 for a per-sample shape.

    ``4`` and ``(4,)`` both give ``ObservationSpace((1, 4))``.
    """
    if isinstance(sample_shape, int):
        return ObservationSpace((1, int(sample_shape)))
    return ObservationSpace((1,) + tuple(int(d) for d in sample_shape))
