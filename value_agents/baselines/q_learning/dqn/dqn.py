from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple, Union

import torch as th

from value_agents.common.config import AgentConfig, LossFunction
from value_agents.common.networks import QNetwork
from value_agents.common.optimizers import build_optimizer, build_scheduler
from value_agents.common.spaces import Discrete, single_observation_space

from .agent import DQNAgent


def dqn(
    *,
    observation_shape: Union[int, Sequence[int]],
    n_actions: int,
    device: Union[str, th.device] = "cpu",
    # -----------------------------
    # Network hyperparams
    # -----------------------------
    hidden_sizes: Tuple[int, ...] = (64, 64),
    activation_fn: Any = th.nn.ReLU,
    dueling_mode: bool = False,
    init_type: str = "orthogonal",
    gain: float = 1.0,
    bias: float = 0.0,
    # -----------------------------
    # Agent hyperparams
    # -----------------------------
    teacher_update_freq: int = 1000,
    n_step: int = 1,
    double_dqn: bool = True,
    loss_function: Union[str, LossFunction] = LossFunction.HUBER,
    max_grad_norm: float = 0.0,
    # -----------------------------
    # Optimizer
    # -----------------------------
    optim_name: str = "adamw",
    lr: float = 3e-4,
    weight_decay: float = 0.0,
    # -----------------------------
    # (Optional) scheduler
    # -----------------------------
    sched_name: str = "none",
    total_steps: int = 0,
    warmup_steps: int = 0,
    min_lr_ratio: float = 0.0,
    poly_power: float = 1.0,
    step_size: int = 1000,
    sched_gamma: float = 0.99,
    milestones: Tuple[int, ...] = (),
    # -----------------------------
    # Logging
    # -----------------------------
    logger: Optional[Any] = None,
) -> DQNAgent:
    """
    Build a complete DQN agent (discrete action space).

    Composes:
      1) QNetwork  : online estimator (the teacher is forked from it)
      2) optimizer : ``build_optimizer`` over the network parameters
      3) scheduler : ``build_scheduler`` (None for a constant LR)
      4) DQNAgent  : update / TD error / persistence

    Parameters
    ----------
    observation_shape : int or Sequence[int]
        Per-sample observation shape (without batch slot), e.g. ``(4,)``.
    n_actions : int
        Number of discrete actions.
    device : str or torch.device, default="cpu"
        Training device.

    Network hyperparams
    -------------------
    hidden_sizes, activation_fn, dueling_mode, init_type, gain, bias
        Forwarded to :class:`QNetwork`.

    Agent hyperparams
    -----------------
    teacher_update_freq : int
        Updates between teacher snapshots.
    n_step : int
        Return horizon of stored transitions (bootstrap discount ``gamma**n``).
    double_dqn : bool
        Select the bootstrap action with the online network.
    loss_function : str or LossFunction
        "huber" or "squared".
    max_grad_norm : float
        Gradient clipping norm (0 disables clipping).

    Optimizer / Scheduler
    ---------------------
    optim_name, lr, weight_decay
        Optimizer selection + hyperparameters.
    sched_name, total_steps, warmup_steps, ...
        Optional per-update LR schedule.

    logger : Logger, optional
        Attached to the agent; also bound for step inference and given the
        config via ``dump_config``.

    Returns
    -------
    agent : DQNAgent

    Examples
    --------
    >>> agent = dqn(observation_shape=(4,), n_actions=2, teacher_update_freq=500)
    >>> action = agent.policy(obs)
    >>> metrics = agent.update(0.99, experiences, weights)
    """
    obs_space = single_observation_space(observation_shape)

    config = AgentConfig(
        teacher_update_freq=teacher_update_freq,
        n_step=n_step,
        double_dqn=double_dqn,
        loss_function=loss_function,
        max_grad_norm=max_grad_norm,
    )

    model = QNetwork(
        state_dim=obs_space.flat_dim,
        action_dim=int(n_actions),
        hidden_sizes=tuple(hidden_sizes),
        activation_fn=activation_fn,
        dueling_mode=bool(dueling_mode),
        init_type=str(init_type),
        gain=float(gain),
        bias=float(bias),
    ).to(device)

    optimizer = build_optimizer(
        model.parameters(),
        name=str(optim_name),
        lr=float(lr),
        weight_decay=float(weight_decay),
    )
    scheduler = build_scheduler(
        optimizer,
        name=str(sched_name),
        total_steps=int(total_steps),
        warmup_steps=int(warmup_steps),
        min_lr_ratio=float(min_lr_ratio),
        poly_power=float(poly_power),
        step_size=int(step_size),
        gamma=float(sched_gamma),
        milestones=tuple(int(m) for m in milestones),
    )

    agent = DQNAgent(
        model,
        optimizer,
        obs_space,
        Discrete(int(n_actions)),
        scheduler=scheduler,
        config=config,
        device=device,
        logger=logger,
    )

    if logger is not None:
        logger.bind_agent(agent)
        logger.dump_config({"algo": "dqn", "n_actions": int(n_actions), **config.to_dict()})

    return agent
