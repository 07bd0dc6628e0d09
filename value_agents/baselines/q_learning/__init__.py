from __future__ import annotations

from .dqn import DQNAgent, dqn
from .qrdqn import QRDQNAgent, qrdqn

__all__ = [
    "dqn",
    "DQNAgent",
    "qrdqn",
    "QRDQNAgent",
]
