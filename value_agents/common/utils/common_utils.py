from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple, Union

import numpy as np
import torch as th


# =============================================================================
# NumPy / Torch conversion utilities
# =============================================================================
def _to_numpy(x: Any, *, dtype: Optional[np.dtype] = None) -> np.ndarray:
    """
    Convert an input to a NumPy array on CPU.

    Parameters
    ----------
    x : Any
        ``np.ndarray``, ``torch.Tensor``, Python scalar, list or tuple.
    dtype : Optional[np.dtype], default=None
        If given, the result is cast to this dtype (no copy when possible).

    Returns
    -------
    arr : np.ndarray
        CPU array. Tensors are detached before conversion.
    """
    if isinstance(x, np.ndarray):
        arr = x
    elif th.is_tensor(x):
        arr = x.detach().cpu().numpy()
    else:
        arr = np.asarray(x)

    if dtype is not None:
        arr = arr.astype(dtype, copy=False)
    return arr


def _to_tensor(
    x: Any,
    device: Union[str, th.device],
    dtype: th.dtype = th.float32,
) -> th.Tensor:
    """
    Convert input to a torch.Tensor on the given device and dtype.

    Parameters
    ----------
    x : Any
        ``np.ndarray``, ``torch.Tensor``, Python scalar or (nested) sequence.
    device : Union[str, torch.device]
        Target device (e.g., "cpu", "cuda:0").
    dtype : torch.dtype, default=torch.float32
        Target dtype. Applied even if ``x`` is already a tensor.

    Returns
    -------
    t : torch.Tensor
        Tensor placed on ``device`` with dtype ``dtype``.
    """
    dev = th.device(device)

    if th.is_tensor(x):
        return x.to(device=dev, dtype=dtype)

    if isinstance(x, np.ndarray):
        return th.from_numpy(x).to(device=dev, dtype=dtype)

    return th.as_tensor(x, dtype=dtype, device=dev)


def _to_flat_np(x: Any, *, dtype: Optional[np.dtype] = np.float32) -> np.ndarray:
    """
    Convert input to a flattened (1D) NumPy array.

    Parameters
    ----------
    x : Any
        Input object.
    dtype : Optional[np.dtype], default=np.float32
        If not None, cast output to this dtype.

    Returns
    -------
    arr : np.ndarray, shape (D,)
    """
    arr = _to_numpy(x).reshape(-1)
    if dtype is not None:
        arr = arr.astype(dtype, copy=False)
    return arr


def _to_scalar(x: Any) -> Optional[float]:
    """
    Convert a scalar-like input to a Python float.

    Parameters
    ----------
    x : Any
        Python scalar, NumPy scalar, or a 1-element array/tensor.

    Returns
    -------
    s : float or None
        Python float if convertible, else None.

    Notes
    -----
    Arrays or tensors with more than one element return None so that vectors
    (e.g. per-sample TD errors) are never silently reduced to one value.
    """
    if th.is_tensor(x):
        if x.numel() == 1:
            return float(x.detach().cpu().item())
        return None

    if isinstance(x, (bool, int, float, np.number)):
        return float(x)

    try:
        arr = np.asarray(x)
        if arr.dtype.kind in "biuf" and arr.size == 1:
            return float(arr.reshape(-1)[0])
    except (TypeError, ValueError):
        return None

    return None


def _is_scalar_like(x: Any) -> bool:
    """Return True if ``_to_scalar`` can convert ``x``."""
    return _to_scalar(x) is not None


# =============================================================================
# Shape helpers
# =============================================================================
def _normalize_shape(shape: Sequence[int], *, name: str = "shape") -> Tuple[int, ...]:
    """
    Coerce a shape-like sequence to a tuple of positive ints.

    Raises
    ------
    ValueError
        If the sequence is empty or any dimension is not positive.
    """
    out = tuple(int(d) for d in shape)
    if len(out) == 0:
        raise ValueError(f"{name} must have at least one dimension, got {out}")
    if any(d <= 0 for d in out):
        raise ValueError(f"{name} dimensions must be > 0, got {out}")
    return out
