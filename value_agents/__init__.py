"""
value_agents

Top-level package initializer.

Training core for value-based RL agents fed by a prioritized replay buffer:
a scalar Q-value agent (DQN family) and a quantile agent (QR-DQN).

Usage
-----
from value_agents import dqn, Experience

agent = dqn(observation_shape=(4,), n_actions=2)
action = agent.policy(obs)
priorities = agent.temporal_difference_error(0.99, experiences)
metrics = agent.update(0.99, experiences, weights)
agent.save("./checkpoints/step_1000")
"""

from __future__ import annotations

from .baselines import DQNAgent, QRDQNAgent, dqn, qrdqn
from .common.config import AgentConfig, LossFunction
from .common.errors import AgentError, CheckpointIOError, SerializationError, TensorConversionError
from .common.experience import Experience, TransitionState, make_state
from .common.policies import BaseValueAgent, DistributionalEstimator, Estimator
from .common.spaces import (
    Action,
    ActionSpace,
    Discrete,
    DiscreteAction,
    ObservationSpace,
    observation_space,
    single_observation_space,
)

__version__ = "0.1.0"

__all__ = [
    # agents
    "BaseValueAgent",
    "DQNAgent",
    "QRDQNAgent",
    "dqn",
    "qrdqn",
    # capabilities
    "Estimator",
    "DistributionalEstimator",
    # config
    "AgentConfig",
    "LossFunction",
    # data model
    "ObservationSpace",
    "Discrete",
    "ActionSpace",
    "DiscreteAction",
    "Action",
    "observation_space",
    "single_observation_space",
    "Experience",
    "TransitionState",
    "make_state",
    # errors
    "AgentError",
    "CheckpointIOError",
    "SerializationError",
    "TensorConversionError",
]
