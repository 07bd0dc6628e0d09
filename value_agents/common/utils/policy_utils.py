from __future__ import annotations

import copy
from contextlib import contextmanager
from typing import Any, Iterator, Union

import torch as th
import torch.nn as nn
import torch.nn.functional as F

from ..config import LossFunction
from .common_utils import _to_tensor


# =============================================================================
# Teacher (target) network utilities
# =============================================================================
@th.no_grad()
def freeze_target(module: nn.Module) -> None:
    """
    Freeze a module for use as a teacher network.

    This function:
      - disables gradients (requires_grad=False)
      - sets module to eval() mode
    """
    for p in module.parameters():
        p.requires_grad_(False)
    module.eval()


def fork_module(module: nn.Module) -> nn.Module:
    """
    Produce a gradient-detached deep copy of ``module``.

    The copy owns its own parameter storage, so later optimizer steps on the
    source never leak into it.

    Parameters
    ----------
    module : nn.Module
        Online network to snapshot.

    Returns
    -------
    snapshot : nn.Module
        Frozen copy (``requires_grad=False`` everywhere, eval mode).
    """
    snapshot = copy.deepcopy(module)
    freeze_target(snapshot)
    return snapshot


@contextmanager
def evaluating(module: nn.Module) -> Iterator[nn.Module]:
    """
    Inference view of a module: eval mode and no autograd, restored on exit.

    Examples
    --------
    >>> with evaluating(model) as m:
    ...     q = m.predict(obs)
    """
    was_training = module.training
    module.eval()
    try:
        with th.no_grad():
            yield module
    finally:
        module.train(was_training)


# =============================================================================
# Loss helpers
# =============================================================================
def elementwise_loss(
    prediction: th.Tensor,
    target: th.Tensor,
    loss_function: Union[LossFunction, str],
) -> th.Tensor:
    """
    Unreduced regression loss between broadcastable tensors.

    Parameters
    ----------
    prediction : torch.Tensor
        Online estimates.
    target : torch.Tensor
        Targets, broadcastable against ``prediction``. Gradients are expected
        to be detached by the caller.
    loss_function : LossFunction or str
        HUBER (delta 1.0) or SQUARED.

    Returns
    -------
    loss : torch.Tensor
        Loss with the broadcast shape of both inputs.
    """
    kind = LossFunction.coerce(loss_function)
    pred_b, target_b = th.broadcast_tensors(prediction, target)

    if kind is LossFunction.HUBER:
        return F.huber_loss(pred_b, target_b, reduction="none", delta=1.0)
    return F.mse_loss(pred_b, target_b, reduction="none")


def quantile_fractions(n_quantiles: int, *, device: Union[str, th.device] = "cpu") -> th.Tensor:
    """
    Midpoint quantile fractions ``tau_i = (i + 0.5) / N``, shape (N,).
    """
    n = int(n_quantiles)
    if n <= 0:
        raise ValueError(f"n_quantiles must be > 0, got {n}")
    return (th.arange(n, device=device, dtype=th.float32) + 0.5) / float(n)


def quantile_regression_weights(td: th.Tensor, fractions: th.Tensor) -> th.Tensor:
    """
    Asymmetric quantile-regression weights ``|tau - 1{td < 0}|``.

    Parameters
    ----------
    td : torch.Tensor
        Pairwise differences ``target - prediction`` of shape (B, N, Nt),
        where dim 1 indexes predicted quantiles.
    fractions : torch.Tensor
        Quantile fractions of shape (N,), aligned with dim 1 of ``td``.

    Returns
    -------
    weights : torch.Tensor
        Detached tensor of shape (B, N, Nt) with values in [0, 1]:
        ``tau`` where ``td >= 0`` and ``1 - tau`` where ``td < 0``.
    """
    if td.dim() != 3:
        raise ValueError(f"td must be (B,N,Nt), got {tuple(td.shape)}")
    if fractions.numel() != td.shape[1]:
        raise ValueError(
            f"fractions length {fractions.numel()} does not match quantile dim {int(td.shape[1])}"
        )

    td = td.detach()
    tau = fractions.to(device=td.device, dtype=td.dtype).view(1, -1, 1)
    is_negative = (td < 0).to(td.dtype)
    return (tau - is_negative).abs()


# =============================================================================
# Prioritized-replay helpers
# =============================================================================
def importance_weights(weights: Any, B: int, device: Union[str, th.device]) -> th.Tensor:
    """
    Normalize caller-supplied importance-sampling weights to a (B,) tensor.

    Parameters
    ----------
    weights : Any
        Sequence, NumPy array or tensor with B elements (shape (B,) or (B,1)).
    B : int
        Expected batch size.
    device : torch.device or str
        Target device.

    Raises
    ------
    ValueError
        If the number of weights does not equal ``B``.
    """
    w = _to_tensor(weights, device=device).reshape(-1)
    if int(w.numel()) != int(B):
        raise ValueError(f"importance weights length mismatch: got {int(w.numel())}, expected B={int(B)}")
    return w.detach()
