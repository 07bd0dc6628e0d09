from __future__ import annotations

from typing import Any, Dict, Sequence

import torch as th

from value_agents.common.experience import Experience
from value_agents.common.policies.base_agent import BaseValueAgent
from value_agents.common.policies.capabilities import DistributionalEstimator
from value_agents.common.utils.common_utils import _to_scalar
from value_agents.common.utils.policy_utils import (
    elementwise_loss,
    importance_weights,
    quantile_fractions,
    quantile_regression_weights,
)


class QRDQNAgent(BaseValueAgent):
    """
    QR-DQN agent on a quantile estimator.

    The estimator returns N quantiles per action, ``Z(s, .) in R^{A x N}``,
    at the midpoint fractions ``tau_i = (i + 0.5) / N``. Acting and TD errors
    use the scalar projection ``predict`` (mean over quantiles).

    Update
    ------
    1) Bootstrap action from ``predict`` (online under double DQN, teacher
       otherwise); target quantiles
       ``y = r + (1 - done) * gamma**n * Z_teacher(s', a*)``, shape (B, 1, N).
    2) Online quantiles of the taken action, shape (B, N, 1).
    3) Pairwise ``td = y - z`` over (B, N_pred, N_target); elementwise loss
       weighted by ``|tau_pred - 1{td < 0}|``.
    4) Per sample: mean over target quantiles, sum over predicted quantiles;
       then importance-weighted batch mean.

    Metrics
    -------
    Those of :class:`DQNAgent` plus ``quantile/spread``, the mean standard
    deviation of the taken action's predicted quantiles.
    """

    required_capability = DistributionalEstimator

    def update(self, gamma: float, experiences: Sequence[Experience], weights: Any) -> Dict[str, Any]:
        batch = self._batch(experiences)
        B = batch.batch_size
        w = importance_weights(weights, B, device=self.device)  # (B,)
        discount = self._discount(gamma)

        self.model.train()
        dist = self.model.get_distribution(batch.observations)  # (B, A, N)
        if dist.dim() != 3 or tuple(dist.shape[:2]) != (B, self.action_space.n):
            raise ValueError(
                f"get_distribution must return (B={B}, A={self.action_space.n}, N), got {tuple(dist.shape)}"
            )
        N = int(dist.shape[2])

        taken = batch.action_indices.view(B, 1, 1).expand(B, 1, N)
        pred = dist.gather(1, taken).permute(0, 2, 1)            # (B, N, 1)

        with th.no_grad():
            next_dist = self.teacher.get_distribution(batch.next_observations)  # (B, A, N)
            if tuple(next_dist.shape) != tuple(dist.shape):
                raise ValueError(
                    f"teacher distribution {tuple(next_dist.shape)} does not match online {tuple(dist.shape)}"
                )
            a_star = self._select_next_actions(batch.next_observations)  # (B, 1)
            next_quantiles = next_dist.gather(1, a_star.view(B, 1, 1).expand(B, 1, N))  # (B, 1, N)

            reward = batch.rewards.mean(dim=1).view(B, 1, 1)
            done = batch.dones.mean(dim=1).view(B, 1, 1)
            target = reward + (1.0 - done) * discount * next_quantiles  # (B, 1, N)

        td = target - pred                                        # (B, N, N)
        loss_grid = elementwise_loss(pred, target, self.config.loss_function)  # (B, N, N)
        weight = quantile_regression_weights(td, quantile_fractions(N, device=self.device))

        per_sample = (loss_grid * weight).mean(dim=2).sum(dim=1)  # (B,)
        loss = (per_sample * w).mean()

        with th.no_grad():
            z = pred.detach().squeeze(-1)                         # (B, N)
            metrics = {
                "q/mean": _to_scalar(z.mean()),
                "target/mean": _to_scalar(target.mean()),
                "quantile/spread": _to_scalar(z.std(dim=1, unbiased=False).mean()),
            }

        return self._apply_gradients(loss, metrics)
