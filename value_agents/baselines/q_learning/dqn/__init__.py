"""
DQN
=======

- :func:`dqn`
    Builder that wires a :class:`QNetwork`, optimizer, optional scheduler and
    :class:`DQNAgent`.

- :class:`DQNAgent`
    Scalar Q-value agent: (double) DQN targets, importance-weighted loss,
    periodic teacher snapshots, TD errors for replay priorities.

Examples
--------
>>> from value_agents.baselines.q_learning.dqn import dqn
>>> agent = dqn(observation_shape=(8,), n_actions=4, device="cuda")
"""

from __future__ import annotations

from .agent import DQNAgent
from .dqn import dqn

__all__ = [
    "dqn",
    "DQNAgent",
]
