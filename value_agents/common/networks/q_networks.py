from __future__ import annotations

from typing import Tuple

import torch as th
import torch.nn as nn

from .base_networks import BaseValueNetwork
from ..utils.network_utils import DuelingMixin


# =============================================================================
# Scalar Q-network
# =============================================================================
class QNetwork(BaseValueNetwork, DuelingMixin):
    """
    Discrete-action Q-network, optionally with dueling decomposition.

    Maps observations to one value per action, ``Q(s) in R^A``. With dueling
    enabled, ``Q(s, a) = V(s) + (A(s, a) - mean_a A(s, a))``.

    Parameters
    ----------
    state_dim : int
        Flattened observation dimension.
    action_dim : int
        Number of discrete actions (A).
    hidden_sizes : tuple[int, ...], optional
        Trunk hidden sizes (default (64, 64)).
    activation_fn : type[nn.Module], optional
        Trunk activation (default ``nn.ReLU``).
    dueling_mode : bool, optional
        Use separate value/advantage heads (default False).
    init_type, gain, bias
        Forwarded to the weight initializer.

    Notes
    -----
    Satisfies the ``Estimator`` capability: ``predict(obs) -> (B, A)``.
    """

    def __init__(
        self,
        state_dim: int,
        action_dim: int,
        hidden_sizes: Tuple[int, ...] = (64, 64),
        activation_fn: type[nn.Module] = nn.ReLU,
        dueling_mode: bool = False,
        init_type: str = "orthogonal",
        gain: float = 1.0,
        bias: float = 0.0,
    ) -> None:
        super().__init__(
            state_dim=state_dim,
            action_dim=action_dim,
            hidden_sizes=hidden_sizes,
            activation_fn=activation_fn,
            init_type=init_type,
            gain=gain,
            bias=bias,
        )
        self.dueling_mode = bool(dueling_mode)

        if self.dueling_mode:
            self.value_head = nn.Linear(self.trunk_dim, 1)              # (B, 1)
            self.adv_head = nn.Linear(self.trunk_dim, self.action_dim)  # (B, A)
        else:
            self.q_head = nn.Linear(self.trunk_dim, self.action_dim)    # (B, A)

        self._finalize_init()

    def forward(self, observation: th.Tensor) -> th.Tensor:
        feat = self.trunk(self._ensure_batch(observation))

        if self.dueling_mode:
            v = self.value_head(feat)
            a = self.adv_head(feat)
            return self.combine_dueling(v, a, mean_dim=-1)

        return self.q_head(feat)

    def predict(self, observation: th.Tensor) -> th.Tensor:
        """Q-values of shape (B, A)."""
        return self.forward(observation)


# =============================================================================
# Quantile Q-network (QR-DQN)
# =============================================================================
class QuantileQNetwork(BaseValueNetwork, DuelingMixin):
    """
    Quantile Q-network: N return quantiles per action.

    The distribution is laid out action-major, ``(B, A, N)``:
    - B: batch size
    - A: number of actions
    - N: number of quantiles

    Parameters
    ----------
    state_dim : int
        Flattened observation dimension.
    action_dim : int
        Number of discrete actions (A).
    n_quantiles : int, optional
        Number of quantiles (N), default 200.
    hidden_sizes : tuple[int, ...], optional
        Trunk hidden sizes (default (64, 64)).
    activation_fn : type[nn.Module], optional
        Trunk activation (default ``nn.ReLU``).
    dueling_mode : bool, optional
        Dueling decomposition per quantile: V (B, 1, N), A (B, A, N).
    init_type, gain, bias
        Forwarded to the weight initializer.

    Notes
    -----
    Satisfies the ``DistributionalEstimator`` capability:
    ``get_distribution(obs) -> (B, A, N)`` and ``predict(obs) -> (B, A)``,
    the latter being the mean over quantiles.
    """

    def __init__(
        self,
        state_dim: int,
        action_dim: int,
        n_quantiles: int = 200,
        hidden_sizes: Tuple[int, ...] = (64, 64),
        activation_fn: type[nn.Module] = nn.ReLU,
        dueling_mode: bool = False,
        init_type: str = "orthogonal",
        gain: float = 1.0,
        bias: float = 0.0,
    ) -> None:
        super().__init__(
            state_dim=state_dim,
            action_dim=action_dim,
            hidden_sizes=hidden_sizes,
            activation_fn=activation_fn,
            init_type=init_type,
            gain=gain,
            bias=bias,
        )
        self.n_quantiles = int(n_quantiles)
        self.dueling_mode = bool(dueling_mode)

        if self.n_quantiles <= 0:
            raise ValueError(f"n_quantiles must be > 0, got: {self.n_quantiles}")

        out_dim = self.action_dim * self.n_quantiles
        if self.dueling_mode:
            self.value_head = nn.Linear(self.trunk_dim, self.n_quantiles)
            self.adv_head = nn.Linear(self.trunk_dim, out_dim)
        else:
            self.q_head = nn.Linear(self.trunk_dim, out_dim)

        self._finalize_init()

    def get_distribution(self, observation: th.Tensor) -> th.Tensor:
        """Quantile values of shape (B, A, N)."""
        feat = self.trunk(self._ensure_batch(observation))

        if self.dueling_mode:
            v = self.value_head(feat).view(-1, 1, self.n_quantiles)
            a = self.adv_head(feat).view(-1, self.action_dim, self.n_quantiles)
            return self.combine_dueling(v, a, mean_dim=1)

        return self.q_head(feat).view(-1, self.action_dim, self.n_quantiles)

    def forward(self, observation: th.Tensor) -> th.Tensor:
        return self.get_distribution(observation)

    def predict(self, observation: th.Tensor) -> th.Tensor:
        """Expected Q-values (mean over quantiles), shape (B, A)."""
        return self.get_distribution(observation).mean(dim=-1)
