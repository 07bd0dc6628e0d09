from __future__ import annotations

from typing import Any, Optional, Sequence, Tuple, Union

import torch as th

from value_agents.common.config import AgentConfig, LossFunction
from value_agents.common.networks import QuantileQNetwork
from value_agents.common.optimizers import build_optimizer, build_scheduler
from value_agents.common.spaces import Discrete, single_observation_space

from .agent import QRDQNAgent


def qrdqn(
    *,
    observation_shape: Union[int, Sequence[int]],
    n_actions: int,
    n_quantiles: int = 200,
    device: Union[str, th.device] = "cpu",
    # network
    hidden_sizes: Tuple[int, ...] = (64, 64),
    activation_fn: Any = th.nn.ReLU,
    dueling_mode: bool = False,
    init_type: str = "orthogonal",
    gain: float = 1.0,
    bias: float = 0.0,
    # agent
    teacher_update_freq: int = 1000,
    n_step: int = 1,
    double_dqn: bool = True,
    loss_function: Union[str, LossFunction] = LossFunction.HUBER,
    max_grad_norm: float = 0.0,
    # optimizer
    optim_name: str = "adamw",
    lr: float = 3e-4,
    weight_decay: float = 0.0,
    # scheduler
    sched_name: str = "none",
    total_steps: int = 0,
    warmup_steps: int = 0,
    min_lr_ratio: float = 0.0,
    poly_power: float = 1.0,
    step_size: int = 1000,
    sched_gamma: float = 0.99,
    milestones: Tuple[int, ...] = (),
    # logging
    logger: Optional[Any] = None,
) -> QRDQNAgent:
    """
    Build a complete QR-DQN agent (discrete action space).

    Same wiring as :func:`value_agents.baselines.q_learning.dqn.dqn` with a
    :class:`QuantileQNetwork` estimator of ``n_quantiles`` quantiles per
    action.

    Parameters
    ----------
    observation_shape : int or Sequence[int]
        Per-sample observation shape (without batch slot).
    n_actions : int
        Number of discrete actions.
    n_quantiles : int, default=200
        Quantiles per action (N).

    Remaining parameters are documented on ``dqn``.

    Returns
    -------
    agent : QRDQNAgent
    """
    obs_space = single_observation_space(observation_shape)

    config = AgentConfig(
        teacher_update_freq=teacher_update_freq,
        n_step=n_step,
        double_dqn=double_dqn,
        loss_function=loss_function,
        max_grad_norm=max_grad_norm,
    )

    model = QuantileQNetwork(
        state_dim=obs_space.flat_dim,
        action_dim=int(n_actions),
        n_quantiles=int(n_quantiles),
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

    agent = QRDQNAgent(
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
        logger.dump_config(
            {"algo": "qrdqn", "n_actions": int(n_actions), "n_quantiles": int(n_quantiles), **config.to_dict()}
        )

    return agent
