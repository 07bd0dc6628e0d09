from __future__ import annotations

import math
from typing import Any, Callable, Sequence, Tuple, Union

import torch as th
import torch.nn as nn


# =============================================================================
# Architecture validation
# =============================================================================
def _validate_hidden_sizes(hidden_sizes: Sequence[int]) -> Tuple[int, ...]:
    """
    Normalize MLP hidden sizes to a non-empty tuple of positive ints.

    Raises
    ------
    ValueError
        If the tuple is empty or contains a non-positive width.
    """
    hs = tuple(int(h) for h in hidden_sizes)
    if len(hs) == 0:
        raise ValueError("hidden_sizes must have at least one layer (e.g., (64, 64)).")
    if any(h <= 0 for h in hs):
        raise ValueError(f"hidden_sizes must be positive integers, got: {hs}")
    return hs


# =============================================================================
# Weight initialization
# =============================================================================
def _make_weights_init(
    init_type: str = "orthogonal",
    gain: float = 1.0,
    bias: float = 0.0,
    kaiming_a: float = math.sqrt(5.0),
) -> Callable[[nn.Module], None]:
    """
    Create an initializer function for ``nn.Module.apply()``.

    Parameters
    ----------
    init_type : str, default="orthogonal"
        One of "xavier_uniform", "xavier_normal", "kaiming_uniform",
        "kaiming_normal", "orthogonal", "normal" (std = gain),
        "uniform" (range [-gain, gain]).
    gain : float, default=1.0
        Gain for Xavier/orthogonal, std for "normal", bound for "uniform".
    bias : float, default=0.0
        Constant bias value.
    kaiming_a : float, default=sqrt(5)
        Negative slope for Kaiming initializers.

    Returns
    -------
    init_fn : Callable[[nn.Module], None]
        Initializer that touches ``nn.Linear`` modules only.

    Raises
    ------
    ValueError
        If ``init_type`` is unknown (raised on first ``nn.Linear`` visited).
    """
    name = str(init_type).lower().strip()
    gain = float(gain)
    bias = float(bias)
    kaiming_a = float(kaiming_a)

    def init_fn(module: nn.Module) -> None:
        if not isinstance(module, nn.Linear):
            return

        if name == "xavier_uniform":
            nn.init.xavier_uniform_(module.weight, gain=gain)
        elif name == "xavier_normal":
            nn.init.xavier_normal_(module.weight, gain=gain)
        elif name == "kaiming_uniform":
            nn.init.kaiming_uniform_(module.weight, a=kaiming_a)
        elif name == "kaiming_normal":
            nn.init.kaiming_normal_(module.weight, a=kaiming_a)
        elif name == "orthogonal":
            nn.init.orthogonal_(module.weight, gain=gain)
        elif name == "normal":
            nn.init.normal_(module.weight, mean=0.0, std=gain)
        elif name == "uniform":
            nn.init.uniform_(module.weight, -gain, gain)
        else:
            raise ValueError(f"Unknown init_type: {init_type!r}")

        if module.bias is not None:
            nn.init.constant_(module.bias, bias)

    return init_fn


# =============================================================================
# Dueling combination
# =============================================================================
class DuelingMixin:
    """
    Value/advantage combination ``Q = V + (A - mean_a A)``.

    Shapes used in this package:
    - scalar heads:   V (B, 1),    A (B, A)
    - quantile heads: V (B, 1, N), A (B, A, N), mean over dim 1
    """

    @staticmethod
    def combine_dueling(v: th.Tensor, a: th.Tensor, *, mean_dim: int = -1) -> th.Tensor:
        return v + (a - a.mean(dim=mean_dim, keepdim=True))


# =============================================================================
# Input shape/device normalization
# =============================================================================
def _ensure_batch(x: Any, device: Union[th.device, str]) -> th.Tensor:
    """
    Convert input to a float tensor on ``device`` shaped (B, D).

    - (D,)         -> (1, D)
    - (B, D)       -> unchanged
    - (B, d1, ...) -> (B, d1 * ...), flattened after the batch dim

    Notes
    -----
    Non-floating inputs are cast to float32.
    """
    x_t = x if isinstance(x, th.Tensor) else th.as_tensor(x)

    if not x_t.is_floating_point():
        x_t = x_t.float()

    x_t = x_t.to(device)

    if x_t.dim() == 0:
        return x_t.view(1, 1)
    if x_t.dim() == 1:
        return x_t.unsqueeze(0)
    if x_t.dim() > 2:
        return x_t.reshape(x_t.shape[0], -1)
    return x_t
