"""
Policies
====================

- capabilities : ``Estimator`` / ``DistributionalEstimator`` protocols and
  ``require_capability``
- base_agent   : ``BaseValueAgent``, the shared acting / TD-error / optimizer
  step / teacher cadence / checkpoint core
"""

from __future__ import annotations

from .base_agent import MODEL_FILE, OPTIMIZER_FILE, SCHEDULER_FILE, BaseValueAgent
from .capabilities import DistributionalEstimator, Estimator, require_capability

__all__ = [
    "BaseValueAgent",
    "Estimator",
    "DistributionalEstimator",
    "require_capability",
    "MODEL_FILE",
    "OPTIMIZER_FILE",
    "SCHEDULER_FILE",
]
