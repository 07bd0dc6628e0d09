"""
Optimizers
====================

Factories for the optimizer and learning-rate schedule owned by each agent,
plus gradient clipping and checkpoint (de)serialization helpers.

Notes
-----
- Checkpoint helpers return plain dicts compatible with ``torch.save()``.
- ``build_scheduler`` returns ``None`` for a constant learning rate; the
  scheduler checkpoint is then an empty dict.

Public API
----------
Optimizers
- build_optimizer
- clip_grad_norm
- current_lr
- optimizer_state_dict
- load_optimizer_state_dict

Schedulers
- build_scheduler
- scheduler_state_dict
- load_scheduler_state_dict
"""

from __future__ import annotations

from .optimizer_builder import (
    build_optimizer,
    clip_grad_norm,
    current_lr,
    load_optimizer_state_dict,
    optimizer_state_dict,
)
from .scheduler_builder import (
    build_scheduler,
    load_scheduler_state_dict,
    scheduler_state_dict,
)

__all__ = [
    # optimizer utils
    "build_optimizer",
    "clip_grad_norm",
    "current_lr",
    "optimizer_state_dict",
    "load_optimizer_state_dict",
    # scheduler utils
    "build_scheduler",
    "scheduler_state_dict",
    "load_scheduler_state_dict",
]
