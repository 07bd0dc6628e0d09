from __future__ import annotations

from typing import Any, Dict, Sequence

import torch as th

from value_agents.common.experience import Experience
from value_agents.common.policies.base_agent import BaseValueAgent
from value_agents.common.utils.common_utils import _to_scalar
from value_agents.common.utils.policy_utils import elementwise_loss, importance_weights


class DQNAgent(BaseValueAgent):
    """
    DQN / Double DQN agent on a scalar Q-value estimator.

    Update
    ------
    Per-action targets (non-taken slots copy the prediction)::

        y = Q(s)*(1 - m) + (r + (1 - done) * gamma**n * Q_teacher(s', a*)) * m

    with ``m`` the one-hot taken action and ``a*`` chosen by the online model
    (double DQN) or by the teacher's max. The loss is the elementwise loss
    summed over actions, weighted by the importance weights and averaged over
    the batch.

    Metrics
    -------
    ``loss/q``, ``q/mean``, ``target/mean`` (taken actions), ``lr``,
    ``teacher/synced``, ``update_counter`` (and ``grad/norm`` when clipping).
    """

    def update(self, gamma: float, experiences: Sequence[Experience], weights: Any) -> Dict[str, Any]:
        batch = self._batch(experiences)
        B = batch.batch_size
        w = importance_weights(weights, B, device=self.device)  # (B,)

        self.model.train()
        q = self.model.predict(batch.observations)              # (B, A)
        self._check_values(q, B)

        targets = self._scalar_targets(batch, q, gamma)          # (B, A)
        per_sample = elementwise_loss(q, targets, self.config.loss_function).sum(dim=1)  # (B,)
        loss = (per_sample * w).mean()

        with th.no_grad():
            mask = batch.actions
            metrics = {
                "q/mean": _to_scalar((q.detach() * mask).sum(dim=1).mean()),
                "target/mean": _to_scalar((targets * mask).sum(dim=1).mean()),
            }

        return self._apply_gradients(loss, metrics)
