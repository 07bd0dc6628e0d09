"""
Networks
====================

Reference action-value networks for the value agents.

- MLPFeaturesExtractor : shared MLP trunk
- BaseValueNetwork     : trunk + init + batch normalization, abstract ``predict``
- QNetwork             : scalar Q-values (B, A), optional dueling
- QuantileQNetwork     : quantiles (B, A, N) via ``get_distribution``,
                         expected values (B, A) via ``predict``

Agents do not depend on these classes; any ``nn.Module`` exposing the same
capabilities can be used instead.
"""

from __future__ import annotations

from .base_networks import BaseValueNetwork, MLPFeaturesExtractor
from .q_networks import QNetwork, QuantileQNetwork

__all__ = [
    "MLPFeaturesExtractor",
    "BaseValueNetwork",
    "QNetwork",
    "QuantileQNetwork",
]
