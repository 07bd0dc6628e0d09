from __future__ import annotations

from typing import Any, Protocol, Type, runtime_checkable

import torch as th
import torch.nn as nn


@runtime_checkable
class Estimator(Protocol):
    """
    Scalar action-value estimator.

    ``predict(observation)`` maps a batch ``(B, ...)`` to ``(B, A)`` values.
    """

    def predict(self, observation: th.Tensor) -> th.Tensor:
        ...


@runtime_checkable
class DistributionalEstimator(Estimator, Protocol):
    """
    Quantile action-value estimator.

    ``get_distribution(observation)`` returns ``(B, A, N)`` quantiles and
    ``predict`` must equal their mean over the last dimension.
    """

    def get_distribution(self, observation: th.Tensor) -> th.Tensor:
        ...


def require_capability(model: Any, capability: Type[Any]) -> nn.Module:
    """
    Check that ``model`` is an ``nn.Module`` implementing ``capability``.

    Raises
    ------
    TypeError
        If the model is not a module or lacks a required method.
    """
    if not isinstance(model, nn.Module):
        raise TypeError(f"model must be a torch.nn.Module, got {type(model).__name__}")
    if not isinstance(model, capability):
        raise TypeError(
            f"{type(model).__name__} does not implement {capability.__name__} "
            f"(missing predict/get_distribution)"
        )
    return model
