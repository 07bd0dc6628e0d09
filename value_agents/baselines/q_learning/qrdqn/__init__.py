"""
QR-DQN
=======

- :func:`qrdqn`
    Builder that wires a :class:`QuantileQNetwork`, optimizer, optional
    scheduler and :class:`QRDQNAgent`.

- :class:`QRDQNAgent`
    Quantile-regression agent: distributional Bellman targets from the
    teacher, asymmetric quantile weights, importance-weighted loss.
"""

from __future__ import annotations

from .agent import QRDQNAgent
from .qrdqn import qrdqn

__all__ = [
    "qrdqn",
    "QRDQNAgent",
]
