"""
Utils
====================

Small, reusable helpers used across the value agents.

Modules included
----------------
- common_utils
    NumPy/Torch conversion helpers and scalar coercion.
- logger_utils
    Run-directory management and lightweight CSV/JSON helpers for writers.
- network_utils
    Weight init, dueling combine, and input batch normalization.
- policy_utils
    Teacher snapshot helpers, elementwise/quantile losses, importance weights.

Design policy
-------------
Functions prefixed with '_' are semi-private: importable for internal use but
not guaranteed as a stable public API.
"""

from __future__ import annotations

# =============================================================================
# Common NumPy/Torch utilities
# =============================================================================
from .common_utils import (
    _is_scalar_like,
    _normalize_shape,
    _to_flat_np,
    _to_numpy,
    _to_scalar,
    _to_tensor,
)

# =============================================================================
# Logger utilities
# =============================================================================
from .logger_utils import (
    META_KEYS,
    _get_step,
    _json_dumps,
    _make_run_dir,
    _open_append,
    _runtime_metadata,
    _safe_call,
    _split_meta,
)

# =============================================================================
# Network utilities
# =============================================================================
from .network_utils import (
    DuelingMixin,
    _ensure_batch,
    _make_weights_init,
    _validate_hidden_sizes,
)

# =============================================================================
# Policy utilities
# =============================================================================
from .policy_utils import (
    elementwise_loss,
    evaluating,
    fork_module,
    freeze_target,
    importance_weights,
    quantile_fractions,
    quantile_regression_weights,
)

__all__ = [
    # common
    "_is_scalar_like",
    "_normalize_shape",
    "_to_flat_np",
    "_to_numpy",
    "_to_scalar",
    "_to_tensor",
    # logger
    "META_KEYS",
    "_get_step",
    "_json_dumps",
    "_make_run_dir",
    "_open_append",
    "_runtime_metadata",
    "_safe_call",
    "_split_meta",
    # network
    "DuelingMixin",
    "_ensure_batch",
    "_make_weights_init",
    "_validate_hidden_sizes",
    # policy
    "elementwise_loss",
    "evaluating",
    "fork_module",
    "freeze_target",
    "importance_weights",
    "quantile_fractions",
    "quantile_regression_weights",
]
