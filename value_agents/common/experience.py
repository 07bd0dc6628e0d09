from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np

from .spaces import ActionLike
from .utils.common_utils import _to_flat_np


@dataclass(frozen=True)
class TransitionState:
    """
    Two-observation window carried by the interaction loop.

    Attributes
    ----------
    observation : np.ndarray
        Observation the last action was taken from.
    next_observation : np.ndarray
        Observation that followed it.
    """

    observation: np.ndarray
    next_observation: np.ndarray


@dataclass(frozen=True)
class Experience:
    """
    One environment transition as stored in the replay buffer.

    Attributes
    ----------
    observation : np.ndarray, shape (D,)
        Flattened observation before the action.
    action : int or DiscreteAction
        Discrete action index taken.
    reward : float
        Reward (or n-step return) observed for the transition.
    done : bool
        Terminal flag. Terminal transitions are never bootstrapped.
    next_observation : np.ndarray, shape (D,)
        Flattened observation after the action.

    Notes
    -----
    Observations are stored as flat float32 vectors. The batcher reshapes them
    to the agent's observation space.
    """

    observation: np.ndarray
    action: ActionLike
    reward: float
    done: bool
    next_observation: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "observation", _to_flat_np(self.observation))
        object.__setattr__(self, "next_observation", _to_flat_np(self.next_observation))
        object.__setattr__(self, "action", int(self.action))
        object.__setattr__(self, "reward", float(self.reward))
        object.__setattr__(self, "done", bool(self.done))

    @classmethod
    def from_state(cls, state: TransitionState, action: ActionLike, reward: float, done: bool) -> "Experience":
        """Build an experience from a ``TransitionState`` window."""
        return cls(
            observation=state.observation,
            action=action,
            reward=reward,
            done=done,
            next_observation=state.next_observation,
        )

    @property
    def state(self) -> TransitionState:
        return TransitionState(observation=self.observation, next_observation=self.next_observation)


def make_state(next_observation: Any, previous_state: TransitionState) -> TransitionState:
    """
    Shift the observation window by one step.

    The new state's ``observation`` is the previous ``next_observation`` and its
    ``next_observation`` is the freshly supplied one. Pure function.
    """
    return TransitionState(
        observation=previous_state.next_observation,
        next_observation=_to_flat_np(next_observation),
    )
