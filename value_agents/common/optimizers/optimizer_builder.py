from __future__ import annotations

from typing import Any, Dict, Iterable, Mapping, Tuple, Union

import torch as th
import torch.nn as nn
import torch.optim as optim
from torch.optim import Optimizer


_OPTIMIZER_ALIASES: Dict[str, str] = {
    "adam": "adam",
    "adamw": "adamw",
    "adamweightdecay": "adamw",
    "sgd": "sgd",
    "rmsprop": "rmsprop",
    "radam": "radam",
}


# =============================================================================
# Optimizer factory
# =============================================================================
def build_optimizer(
    params: Union[Iterable[nn.Parameter], Iterable[Dict[str, Any]]],
    *,
    name: str = "adamw",
    lr: float = 3e-4,
    weight_decay: float = 0.0,
    betas: Tuple[float, float] = (0.9, 0.999),
    eps: float = 1e-8,
    momentum: float = 0.0,
    nesterov: bool = False,
    alpha: float = 0.99,
    centered: bool = False,
) -> Optimizer:
    """
    Build a PyTorch optimizer from a string identifier.

    Parameters
    ----------
    params : Iterable[nn.Parameter] or Iterable[Dict[str, Any]]
        Flat parameters (e.g. ``model.parameters()``) or torch param groups.
    name : str, default="adamw"
        Case-insensitive; "-" and "_" are ignored.
        Supported: "adam", "adamw", "sgd", "rmsprop", "radam".
    lr : float, default=3e-4
        Base learning rate. The agent's scheduler scales it per step.
    weight_decay : float, default=0.0
        L2 / decoupled weight decay coefficient.
    betas : Tuple[float, float], default=(0.9, 0.999)
        Adam-family betas.
    eps : float, default=1e-8
        Numerical epsilon for Adam-family and RMSprop.
    momentum : float, default=0.0
        Momentum for SGD / RMSprop.
    nesterov : bool, default=False
        Nesterov momentum for SGD.
    alpha : float, default=0.99
        RMSprop smoothing constant.
    centered : bool, default=False
        Centered RMSprop.

    Returns
    -------
    optimizer : torch.optim.Optimizer

    Raises
    ------
    ValueError
        If ``name`` is unknown or a hyperparameter is out of range.
    """
    lr = float(lr)
    weight_decay = float(weight_decay)
    eps = float(eps)
    momentum = float(momentum)

    if lr <= 0:
        raise ValueError(f"lr must be > 0, got: {lr}")
    if weight_decay < 0:
        raise ValueError(f"weight_decay must be >= 0, got: {weight_decay}")
    if eps <= 0:
        raise ValueError(f"eps must be > 0, got: {eps}")
    if momentum < 0:
        raise ValueError(f"momentum must be >= 0, got: {momentum}")

    b1, b2 = float(betas[0]), float(betas[1])
    if not (0.0 <= b1 < 1.0 and 0.0 <= b2 < 1.0):
        raise ValueError(f"betas must be in [0, 1), got: {betas}")

    key = str(name).lower().strip().replace("-", "").replace("_", "")
    opt = _OPTIMIZER_ALIASES.get(key)

    if opt == "adam":
        return optim.Adam(params, lr=lr, betas=(b1, b2), eps=eps, weight_decay=weight_decay)
    if opt == "adamw":
        return optim.AdamW(params, lr=lr, betas=(b1, b2), eps=eps, weight_decay=weight_decay)
    if opt == "sgd":
        return optim.SGD(params, lr=lr, momentum=momentum, weight_decay=weight_decay, nesterov=bool(nesterov))
    if opt == "rmsprop":
        return optim.RMSprop(
            params,
            lr=lr,
            alpha=float(alpha),
            eps=eps,
            weight_decay=weight_decay,
            momentum=momentum,
            centered=bool(centered),
        )
    if opt == "radam":
        return optim.RAdam(params, lr=lr, betas=(b1, b2), eps=eps, weight_decay=weight_decay)

    raise ValueError(f"Unknown optimizer name: {name!r}")


def clip_grad_norm(
    parameters: Iterable[nn.Parameter],
    max_norm: float,
    norm_type: float = 2.0,
) -> float:
    """
    Clip the global gradient norm in place.

    Parameters
    ----------
    parameters : Iterable[nn.Parameter]
        Parameters whose ``.grad`` will be rescaled. Generators are
        materialized first.
    max_norm : float
        Maximum norm. ``<= 0`` is a no-op returning 0.0.
    norm_type : float, default=2.0
        p-norm type.

    Returns
    -------
    total_norm : float
        Pre-clip total norm.
    """
    if max_norm <= 0:
        return 0.0

    params_list = list(parameters)
    total_norm = nn.utils.clip_grad_norm_(params_list, float(max_norm), norm_type=float(norm_type))
    if th.is_tensor(total_norm):
        return float(total_norm.detach().cpu().item())
    return float(total_norm)


def current_lr(optimizer: Optimizer) -> float:
    """Learning rate of the first param group."""
    return float(optimizer.param_groups[0]["lr"])


# =============================================================================
# Checkpoint helpers
# =============================================================================
def optimizer_state_dict(optimizer: Optimizer) -> Dict[str, Any]:
    """Checkpoint-ready optimizer state (plain dict for ``torch.save``)."""
    return optimizer.state_dict()


def load_optimizer_state_dict(optimizer: Optimizer, state: Mapping[str, Any]) -> None:
    """
    Restore optimizer state.

    Raises
    ------
    ValueError
        Propagated from torch when the param-group layout does not match.
    """
    optimizer.load_state_dict(dict(state))
