from __future__ import annotations

import os
import pickle
from abc import ABC, abstractmethod
from typing import Any, Callable, ClassVar, Dict, Mapping, Optional, Sequence, Type, Union

import numpy as np
import torch as th
import torch.nn as nn
from torch.optim import Optimizer

from ..batch import TransitionBatch, TransitionBatcher
from ..config import AgentConfig
from ..errors import CheckpointIOError, SerializationError, TensorConversionError
from ..experience import Experience, TransitionState, make_state
from ..optimizers import (
    clip_grad_norm,
    current_lr,
    load_optimizer_state_dict,
    load_scheduler_state_dict,
    optimizer_state_dict,
    scheduler_state_dict,
)
from ..spaces import Discrete, DiscreteAction, ObservationSpace
from ..utils.common_utils import _to_numpy, _to_scalar, _to_tensor
from ..utils.policy_utils import evaluating, fork_module
from .capabilities import Estimator, require_capability


MODEL_FILE = "model.pt"
OPTIMIZER_FILE = "optimizer.pt"
SCHEDULER_FILE = "scheduler.pt"


class BaseValueAgent(ABC):
    """
    Shared training core of the value-based agents.

    The agent owns an online model, a frozen teacher snapshot of it, the
    optimizer and the optional learning-rate scheduler. Subclasses implement
    the loss in ``update``; everything else (acting, TD errors for replay
    priorities, the optimizer step, teacher cadence, persistence) lives here.

    Parameters
    ----------
    model : nn.Module
        Online estimator. Must implement ``required_capability``.
    optimizer : torch.optim.Optimizer
        Optimizer over ``model.parameters()``.
    observation_space : ObservationSpace or Sequence[int]
        Full observation shape with batch slot, e.g. ``(1, 4)``.
    action_space : Discrete or int
        Discrete action set.
    scheduler : optional
        LR scheduler stepped once per update, or None.
    config : AgentConfig, optional
        Hyperparameters; defaults to ``AgentConfig()``.
    device : str or torch.device, optional
        Target device. Defaults to the device of the model's parameters.
    logger : Logger, optional
        Receives update metrics (``train/``) and policy scores (``policy/``).

    Attributes
    ----------
    teacher : nn.Module
        Frozen copy of ``model`` used for bootstrap targets.
    update_counter : int
        Number of completed ``update`` calls.

    Raises
    ------
    TypeError
        If ``model`` is not an ``nn.Module`` with the required capability.
    """

    required_capability: ClassVar[Type[Any]] = Estimator

    def __init__(
        self,
        model: nn.Module,
        optimizer: Optimizer,
        observation_space: Union[ObservationSpace, Sequence[int]],
        action_space: Union[Discrete, int],
        *,
        scheduler: Optional[Any] = None,
        config: Optional[AgentConfig] = None,
        device: Optional[Union[str, th.device]] = None,
        logger: Optional[Any] = None,
    ) -> None:
        self.model = require_capability(model, self.required_capability)

        if device is None:
            first = next(self.model.parameters(), None)
            self.device = first.device if first is not None else th.device("cpu")
        else:
            self.device = th.device(device)
            self.model.to(self.device)

        self.observation_space = (
            observation_space
            if isinstance(observation_space, ObservationSpace)
            else ObservationSpace(tuple(observation_space))
        )
        self.action_space = action_space if isinstance(action_space, Discrete) else Discrete(int(action_space))

        self.optimizer = optimizer
        self.scheduler = scheduler
        self.config = config if config is not None else AgentConfig()
        self.logger = logger

        self.batcher = TransitionBatcher(self.device, self.action_space)
        self.teacher = fork_module(self.model)
        self.update_counter = 0

    # =============================================================================
    # Acting
    # =============================================================================
    def policy(self, observation: Any) -> DiscreteAction:
        """
        Greedy action for a single observation.

        Parameters
        ----------
        observation : array-like or torch.Tensor
            One observation; any shape with ``observation_space.flat_dim``
            elements.

        Returns
        -------
        action : DiscreteAction
            Arg-max of the online model's scores.

        Notes
        -----
        The model runs in eval mode without autograd and its previous mode is
        restored afterwards.
        """
        obs = self._reshape(observation, batch_size=1)

        with evaluating(self.model) as m:
            scores = m.predict(obs)

        self._check_values(scores, 1)
        if self.logger is not None:
            self.logger.record(
                {"q_max": scores.max(), "q_mean": scores.mean()},
                prefix="policy",
            )
        return DiscreteAction(int(th.argmax(scores[0]).item()))

    def make_state(self, next_observation: Any, previous_state: TransitionState) -> TransitionState:
        """
        Next two-observation window; see ``value_agents.common.experience.make_state``.
        """
        return make_state(next_observation, previous_state)

    # =============================================================================
    # Learning
    # =============================================================================
    def temporal_difference_error(self, gamma: float, experiences: Sequence[Experience]) -> np.ndarray:
        """
        Per-sample TD magnitude used as replay priority.

        Computes ``sum_a |Q(s, a) - y(s, a)|`` with the same targets as a
        scalar update, without touching parameters, optimizer state or
        counters.

        Parameters
        ----------
        gamma : float
            Discount factor.
        experiences : Sequence[Experience]
            Minibatch of B transitions.

        Returns
        -------
        td_error : np.ndarray, shape (B,), float32

        Raises
        ------
        TensorConversionError
            If the result cannot be copied to NumPy.
        """
        batch = self._batch(experiences)

        with th.no_grad():
            q = self.model.predict(batch.observations)
            self._check_values(q, batch.batch_size)
            targets = self._scalar_targets(batch, q, gamma)
            td = (q - targets).abs().sum(dim=1)

        try:
            return _to_numpy(td, dtype=np.float32)
        except (RuntimeError, TypeError, ValueError) as e:
            raise TensorConversionError(f"temporal_difference_error: cannot convert TD errors: {e}") from e

    @abstractmethod
    def update(self, gamma: float, experiences: Sequence[Experience], weights: Any) -> Dict[str, Any]:
        """
        One gradient step on a prioritized minibatch.

        Parameters
        ----------
        gamma : float
            Discount factor.
        experiences : Sequence[Experience]
            Minibatch of B transitions.
        weights : array-like
            B importance-sampling weights.

        Returns
        -------
        metrics : Dict[str, Any]
        """
        raise NotImplementedError

    # ---------------------------------------------------------------------
    # Target construction
    # ---------------------------------------------------------------------
    def _discount(self, gamma: float) -> float:
        g = float(gamma)
        if not (0.0 <= g <= 1.0):
            raise ValueError(f"gamma must be in [0, 1], got {g}")
        return g ** self.config.n_step

    def _select_next_actions(self, next_observations: th.Tensor) -> th.Tensor:
        """
        Bootstrap action per sample, shape (B, 1).

        Online arg-max (in eval mode) under double DQN, teacher arg-max otherwise.
        """
        if self.config.double_dqn:
            with evaluating(self.model) as m:
                return th.argmax(m.predict(next_observations), dim=1, keepdim=True)
        with th.no_grad():
            return th.argmax(self.teacher.predict(next_observations), dim=1, keepdim=True)

    def _bootstrap_values(self, next_observations: th.Tensor) -> th.Tensor:
        """
        Teacher value of the bootstrap action, shape (B, 1), detached.
        """
        with th.no_grad():
            teacher_q = self.teacher.predict(next_observations)
            self._check_values(teacher_q, int(next_observations.shape[0]))
            if self.config.double_dqn:
                return teacher_q.gather(1, self._select_next_actions(next_observations))
            return teacher_q.max(dim=1, keepdim=True).values

    def _scalar_targets(self, batch: TransitionBatch, q: th.Tensor, gamma: float) -> th.Tensor:
        """
        Per-action regression targets, shape (B, A).

        Taken actions get ``r + (1 - done) * gamma**n * bootstrap``; other
        slots copy the (detached) prediction so their loss is zero.
        """
        discount = self._discount(gamma)
        bootstrap = self._bootstrap_values(batch.next_observations)  # (B, 1)
        bootstrapped = batch.rewards + (1.0 - batch.dones) * discount * bootstrap
        mask = batch.actions
        return q.detach() * (1.0 - mask) + bootstrapped * mask

    # ---------------------------------------------------------------------
    # Optimizer step / teacher cadence
    # ---------------------------------------------------------------------
    def _apply_gradients(self, loss: th.Tensor, metrics: Dict[str, Any]) -> Dict[str, Any]:
        """
        Backward, clip, step, schedule, count, sync; then report.
        """
        self.optimizer.zero_grad(set_to_none=True)
        loss.backward()
        grad_norm = clip_grad_norm(self.model.parameters(), max_norm=self.config.max_grad_norm)
        lr = current_lr(self.optimizer)
        self.optimizer.step()
        if self.scheduler is not None:
            self.scheduler.step()

        self.update_counter += 1
        synced = (self.update_counter % self.config.teacher_update_freq) == 0
        if synced:
            self.sync_teacher()

        out: Dict[str, Any] = {"loss/q": float(_to_scalar(loss))}
        out.update(metrics)
        out["lr"] = lr
        out["teacher/synced"] = 1.0 if synced else 0.0
        out["update_counter"] = self.update_counter
        if self.config.max_grad_norm > 0.0:
            out["grad/norm"] = grad_norm

        if self.logger is not None:
            self.logger.log(out, step=self.update_counter, prefix="train")
            # drain policy scores recorded since the previous update
            self.logger.dump(step=self.update_counter)
        return out

    def sync_teacher(self) -> None:
        """Replace the teacher with a fresh frozen copy of the online model."""
        self.teacher = fork_module(self.model)

    # ---------------------------------------------------------------------
    # Input handling
    # ---------------------------------------------------------------------
    def _reshape(self, observation: Any, *, batch_size: int) -> th.Tensor:
        shape = self.observation_space.with_batch(batch_size)
        obs = _to_tensor(observation, device=self.device)
        if int(obs.numel()) != int(np.prod(shape)):
            raise ValueError(f"observation with {int(obs.numel())} elements does not fit shape {shape}")
        return obs.reshape(shape)

    def _batch(self, experiences: Sequence[Experience]) -> TransitionBatch:
        experiences = list(experiences)
        shape = self.observation_space.with_batch(max(1, len(experiences)))
        return self.batcher.batch(experiences, shape)

    def _check_values(self, values: th.Tensor, batch_size: int) -> None:
        expected = (int(batch_size), int(self.action_space.n))
        if tuple(values.shape) != expected:
            raise ValueError(f"model.predict must return {expected}, got {tuple(values.shape)}")

    # =============================================================================
    # Persistence
    # =============================================================================
    def save(self, directory: str) -> None:
        """
        Write ``model.pt``, ``optimizer.pt`` and ``scheduler.pt`` into ``directory``.

        Raises
        ------
        CheckpointIOError
            If the directory or a file cannot be written.
        SerializationError
            If a state cannot be pickled.
        """
        directory = str(directory)
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise CheckpointIOError("save", directory, str(e)) from e

        self._write(os.path.join(directory, MODEL_FILE), self.model.state_dict())
        self._write(os.path.join(directory, OPTIMIZER_FILE), optimizer_state_dict(self.optimizer))
        self._write(os.path.join(directory, SCHEDULER_FILE), scheduler_state_dict(self.scheduler))

    def load(self, directory: str) -> None:
        """
        Restore whichever of the three checkpoint files exist in ``directory``.

        Missing files (or a missing directory) are skipped and leave that part
        of the state untouched. Restoring the model also re-forks the teacher.

        Raises
        ------
        CheckpointIOError
            If an existing file cannot be read.
        SerializationError
            If a file cannot be decoded or its state does not fit.
        """
        directory = str(directory)

        def _restore_model(state: Mapping[str, Any]) -> None:
            self.model.load_state_dict(state)
            self.sync_teacher()

        self._restore(os.path.join(directory, MODEL_FILE), _restore_model)
        self._restore(
            os.path.join(directory, OPTIMIZER_FILE),
            lambda state: load_optimizer_state_dict(self.optimizer, state),
        )
        self._restore(
            os.path.join(directory, SCHEDULER_FILE),
            lambda state: load_scheduler_state_dict(self.scheduler, state),
        )

    @staticmethod
    def _write(path: str, state: Mapping[str, Any]) -> None:
        try:
            th.save(state, path)
        except OSError as e:
            raise CheckpointIOError("save", path, str(e)) from e
        except (pickle.PicklingError, TypeError, AttributeError) as e:
            raise SerializationError("save", path, str(e)) from e

    def _restore(self, path: str, apply: Callable[[Mapping[str, Any]], None]) -> None:
        if not os.path.isfile(path):
            return

        try:
            state = th.load(path, map_location=self.device, weights_only=True)
        except OSError as e:
            raise CheckpointIOError("load", path, str(e)) from e
        except (pickle.UnpicklingError, EOFError, RuntimeError, ValueError) as e:
            raise SerializationError("load", path, str(e)) from e

        if not isinstance(state, Mapping):
            raise SerializationError("load", path, f"expected a mapping, got {type(state).__name__}")

        try:
            apply(state)
        except (RuntimeError, ValueError, KeyError, TypeError) as e:
            raise SerializationError("restore", path, str(e)) from e
