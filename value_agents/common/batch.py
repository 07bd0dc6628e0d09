from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence, Tuple, Union

import numpy as np
import torch as th
import torch.nn.functional as F

from .experience import Experience
from .spaces import Discrete


@dataclass
class TransitionBatch:
    """
    Batch-aligned tensors built from a list of experiences.

    Attributes
    ----------
    observations : torch.Tensor
        Shape ``(B, *sample_shape)``.
    next_observations : torch.Tensor
        Shape ``(B, *sample_shape)``.
    actions : torch.Tensor
        One-hot action mask, shape ``(B, A)``, float32.
    rewards : torch.Tensor
        Reward repeated across the action dim, shape ``(B, A)``.
    dones : torch.Tensor
        Terminal flag (0/1) repeated across the action dim, shape ``(B, A)``.

    Notes
    -----
    Rewards and dones are stored per action slot so that the scalar agent can
    mask them with ``actions`` while the quantile agent recovers the per-sample
    scalar with a mean over the action dim. Both read the same value.
    """

    observations: th.Tensor
    next_observations: th.Tensor
    actions: th.Tensor
    rewards: th.Tensor
    dones: th.Tensor

    @property
    def batch_size(self) -> int:
        return int(self.actions.shape[0])

    @property
    def action_indices(self) -> th.Tensor:
        """Taken action index per sample, shape (B,), int64."""
        return self.actions.argmax(dim=1)


class TransitionBatcher:
    """
    Converts ``Experience`` records into a ``TransitionBatch`` on a device.

    Parameters
    ----------
    device : torch.device or str
        Target device for every tensor.
    action_space : Discrete
        Action space used to size the one-hot action mask.
    """

    def __init__(self, device: Union[str, th.device], action_space: Discrete) -> None:
        self.device = device if isinstance(device, th.device) else th.device(str(device))
        self.action_space = action_space

    def batch(self, experiences: Sequence[Experience], observation_shape: Tuple[int, ...]) -> TransitionBatch:
        """
        Stack experiences into tensors.

        Parameters
        ----------
        experiences : Sequence[Experience]
            Non-empty list of transitions.
        observation_shape : Tuple[int, ...]
            Full target shape with the batch slot already set to
            ``len(experiences)``.

        Returns
        -------
        batch : TransitionBatch

        Raises
        ------
        ValueError
            On an empty list, a batch-slot mismatch, an observation whose size
            does not fit ``observation_shape``, or an out-of-range action.
        """
        B = len(experiences)
        if B == 0:
            raise ValueError("cannot batch an empty list of experiences")

        shape = tuple(int(d) for d in observation_shape)
        if shape[0] != B:
            raise ValueError(f"observation_shape batch slot {shape[0]} != number of experiences {B}")

        n_actions = int(self.action_space.n)

        obs = np.stack([e.observation for e in experiences]).astype(np.float32, copy=False)
        nxt = np.stack([e.next_observation for e in experiences]).astype(np.float32, copy=False)
        if obs.size != int(np.prod(shape)) or nxt.size != int(np.prod(shape)):
            raise ValueError(
                f"observations of size {obs.shape[1:]} do not fit observation shape {shape}"
            )

        actions = np.asarray([int(e.action) for e in experiences], dtype=np.int64)
        if actions.min() < 0 or actions.max() >= n_actions:
            raise ValueError(f"action index out of range [0, {n_actions}): {actions.tolist()}")

        rewards = np.asarray([e.reward for e in experiences], dtype=np.float32)
        dones = np.asarray([1.0 if e.done else 0.0 for e in experiences], dtype=np.float32)

        act_t = th.from_numpy(actions).to(self.device)
        one_hot = F.one_hot(act_t, num_classes=n_actions).to(dtype=th.float32)

        rew_t = th.from_numpy(rewards).to(self.device).view(B, 1).expand(B, n_actions).contiguous()
        done_t = th.from_numpy(dones).to(self.device).view(B, 1).expand(B, n_actions).contiguous()

        return TransitionBatch(
            observations=th.from_numpy(obs).to(self.device).reshape(shape),
            next_observations=th.from_numpy(nxt).to(self.device).reshape(shape),
            actions=one_hot,
            rewards=rew_t,
            dones=done_t,
        )
