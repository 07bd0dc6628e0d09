from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence, Tuple, Type

import torch as th
import torch.nn as nn

from ..utils.network_utils import _ensure_batch, _make_weights_init, _validate_hidden_sizes


# =============================================================================
# Feature Extractors
# =============================================================================
class MLPFeaturesExtractor(nn.Module):
    """
    Plain MLP trunk: (Linear -> Activation) x len(hidden_sizes).

    Parameters
    ----------
    input_dim : int
        Flattened observation dimension.
    hidden_sizes : Sequence[int]
        Hidden widths; the output dimension is ``hidden_sizes[-1]``.
    activation_fn : type[nn.Module], optional
        Activation class inserted after each linear layer (default ``nn.ReLU``).
    """

    def __init__(
        self,
        input_dim: int,
        hidden_sizes: Sequence[int],
        activation_fn: Type[nn.Module] = nn.ReLU,
    ) -> None:
        super().__init__()
        hs = _validate_hidden_sizes(hidden_sizes)

        layers: list[nn.Module] = []
        prev_dim = int(input_dim)
        for h in hs:
            layers.append(nn.Linear(prev_dim, h))
            layers.append(activation_fn())
            prev_dim = h

        self.net = nn.Sequential(*layers)
        self.out_dim = int(hs[-1])

    def forward(self, x: th.Tensor) -> th.Tensor:
        return self.net(x)


# =============================================================================
# Value network base
# =============================================================================
class BaseValueNetwork(nn.Module, ABC):
    """
    Base class for action-value networks with a single MLP trunk.

    Subclasses build their heads after calling ``super().__init__`` and then
    call ``self._finalize_init()`` so that the initializer covers trunk and
    heads alike.

    Parameters
    ----------
    state_dim : int
        Flattened observation dimension.
    action_dim : int
        Number of discrete actions (A).
    hidden_sizes : tuple[int, ...]
        Trunk hidden sizes.
    activation_fn : type[nn.Module], optional
        Trunk activation class (default ``nn.ReLU``).
    init_type : str, optional
        Initializer passed to ``_make_weights_init`` (default "orthogonal").
    gain : float, optional
        Init gain (default 1.0).
    bias : float, optional
        Bias init constant (default 0.0).

    Attributes
    ----------
    trunk : MLPFeaturesExtractor
    trunk_dim : int
    """

    def __init__(
        self,
        *,
        state_dim: int,
        action_dim: int,
        hidden_sizes: Tuple[int, ...],
        activation_fn: Type[nn.Module] = nn.ReLU,
        init_type: str = "orthogonal",
        gain: float = 1.0,
        bias: float = 0.0,
    ) -> None:
        super().__init__()

        self.state_dim = int(state_dim)
        self.action_dim = int(action_dim)
        if self.state_dim <= 0:
            raise ValueError(f"state_dim must be > 0, got {self.state_dim}")
        if self.action_dim <= 0:
            raise ValueError(f"action_dim must be > 0, got {self.action_dim}")

        self.hidden_sizes = _validate_hidden_sizes(hidden_sizes)
        self.trunk = MLPFeaturesExtractor(self.state_dim, self.hidden_sizes, activation_fn)
        self.trunk_dim = int(self.trunk.out_dim)

        self._init_fn = _make_weights_init(init_type=init_type, gain=gain, bias=bias)

    def _finalize_init(self) -> None:
        self.apply(self._init_fn)

    def _ensure_batch(self, x: Any) -> th.Tensor:
        """
        Input as a (B, state_dim) float tensor on the module's device.
        """
        device = next(self.parameters()).device
        return _ensure_batch(x, device=device)

    @abstractmethod
    def predict(self, observation: th.Tensor) -> th.Tensor:
        """
        Scalar action values, shape (B, A).
        """
        raise NotImplementedError
