from __future__ import annotations

from .q_learning import DQNAgent, QRDQNAgent, dqn, qrdqn

__all__ = [
    "dqn",
    "DQNAgent",
    "qrdqn",
    "QRDQNAgent",
]
