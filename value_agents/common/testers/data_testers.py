from __future__ import annotations

from typing import Any, Callable, List, Tuple

import numpy as np
import torch as th

from value_agents.common.batch import TransitionBatcher
from value_agents.common.config import AgentConfig, LossFunction
from value_agents.common.errors import AgentError, CheckpointIOError, SerializationError
from value_agents.common.experience import Experience, TransitionState, make_state
from value_agents.common.spaces import (
    Discrete,
    DiscreteAction,
    ObservationSpace,
    observation_space,
    single_observation_space,
)
from value_agents.common.testers.test_harness import make_experience
from value_agents.common.testers.test_utils import (
    assert_allclose,
    assert_eq,
    assert_in,
    assert_raises,
    assert_shape,
    assert_true,
    run_tests,
)
from value_agents.common.utils.common_utils import _is_scalar_like, _to_scalar


# =============================================================================
# Tests: spaces
# =============================================================================
def test_observation_space_shapes():
    space = ObservationSpace((1, 2, 3))
    assert_eq(space.rank, 3)
    assert_eq(space.sample_shape, (2, 3))
    assert_eq(space.flat_dim, 6)
    assert_eq(space.with_batch(5), (5, 2, 3))
    assert_eq(observation_space([1, 4]), ObservationSpace((1, 4)))
    assert_eq(single_observation_space(4).shape, (1, 4))
    assert_eq(single_observation_space((2, 3)).shape, (1, 2, 3))

    assert_raises(ValueError, lambda: space.with_batch(0))
    assert_raises(ValueError, lambda: ObservationSpace(()))
    assert_raises(ValueError, lambda: ObservationSpace((1, 0)))


def test_discrete_space_and_action():
    space = Discrete(3)
    assert_true(space.contains(2) and not space.contains(3) and not space.contains(-1))
    assert_raises(ValueError, lambda: Discrete(0))

    a = DiscreteAction(np.int64(2))
    assert_eq(int(a), 2)
    assert_eq([10, 20, 30][a], 30)
    assert_eq(int(DiscreteAction(0)), 0)
    assert_raises(ValueError, lambda: DiscreteAction(-1))


# =============================================================================
# Tests: experience / state
# =============================================================================
def test_experience_normalizes_fields():
    e = Experience(
        observation=np.ones((2, 2), dtype=np.float64),
        action=DiscreteAction(1),
        reward=np.float32(0.5),
        done=np.bool_(True),
        next_observation=[0, 1, 2, 3],
    )
    assert_eq(e.observation.shape, (4,))
    assert_eq(e.observation.dtype, np.float32)
    assert_eq(e.next_observation.dtype, np.float32)
    assert_true(type(e.action) is int and e.action == 1)
    assert_true(type(e.reward) is float and type(e.done) is bool)

    st = e.state
    assert_allclose(st.observation, e.observation)
    again = Experience.from_state(st, 0, 1.0, False)
    assert_allclose(again.next_observation, e.next_observation)


def test_make_state_shifts_window():
    prev = TransitionState(observation=np.zeros(3, np.float32), next_observation=np.ones(3, np.float32))
    nxt = make_state(th.full((3,), 2.0), prev)
    assert_allclose(nxt.observation, np.ones(3))
    assert_allclose(nxt.next_observation, np.full(3, 2.0))
    # previous state is not modified
    assert_allclose(prev.observation, np.zeros(3))


# =============================================================================
# Tests: batcher
# =============================================================================
def test_batcher_layout():
    batcher = TransitionBatcher("cpu", Discrete(3))
    exps = [
        make_experience(action=2, reward=1.5, done=False, obs_dim=4, fill=0.0),
        make_experience(action=0, reward=-1.0, done=True, obs_dim=4, fill=2.0),
    ]
    b = batcher.batch(exps, (2, 2, 2))

    assert_shape(b.observations, (2, 2, 2))
    assert_shape(b.next_observations, (2, 2, 2))
    assert_allclose(b.actions, th.tensor([[0.0, 0.0, 1.0], [1.0, 0.0, 0.0]]))
    assert_allclose(b.rewards, th.tensor([[1.5] * 3, [-1.0] * 3]))
    assert_allclose(b.dones, th.tensor([[0.0] * 3, [1.0] * 3]))
    assert_allclose(b.next_observations[1], th.full((2, 2), 3.0))
    assert_eq(b.batch_size, 2)
    assert_eq(b.action_indices.tolist(), [2, 0])


def test_batcher_rejects_bad_input():
    batcher = TransitionBatcher(th.device("cpu"), Discrete(2))
    assert_raises(ValueError, lambda: batcher.batch([], (1, 4)))
    assert_raises(ValueError, lambda: batcher.batch([make_experience()], (2, 4)))
    assert_raises(ValueError, lambda: batcher.batch([make_experience(obs_dim=3)], (1, 4)))
    assert_raises(ValueError, lambda: batcher.batch([make_experience(action=2)], (1, 4)))


# =============================================================================
# Tests: config / errors / scalars
# =============================================================================
def test_agent_config_validation():
    cfg = AgentConfig(loss_function="MSE", n_step="3", double_dqn=0)
    assert_true(cfg.loss_function is LossFunction.SQUARED)
    assert_eq(cfg.n_step, 3)
    assert_eq(cfg.double_dqn, False)
    assert_eq(cfg.to_dict()["loss_function"], "squared")
    assert_true(LossFunction.coerce("smooth-l1") is LossFunction.HUBER)

    assert_raises(ValueError, lambda: AgentConfig(teacher_update_freq=0))
    assert_raises(ValueError, lambda: AgentConfig(n_step=0))
    assert_raises(ValueError, lambda: AgentConfig(max_grad_norm=-1.0))
    assert_raises(ValueError, lambda: AgentConfig(loss_function="l1"))


def test_error_taxonomy():
    io = CheckpointIOError("save", "/x/model.pt", "denied")
    assert_true(isinstance(io, AgentError) and isinstance(io, OSError))
    assert_eq((io.operation, io.path), ("save", "/x/model.pt"))
    assert_in("denied", str(io))

    ser = SerializationError("load", "/x/optimizer.pt")
    assert_true(isinstance(ser, AgentError) and not isinstance(ser, OSError))
    assert_eq(str(ser), "load failed for /x/optimizer.pt")


def test_scalar_coercion():
    assert_eq(_to_scalar(th.tensor([2.5])), 2.5)
    assert_eq(_to_scalar(np.array([[3]])), 3.0)
    assert_eq(_to_scalar(True), 1.0)
    assert_true(_to_scalar(th.zeros(2)) is None)
    assert_true(_to_scalar("abc") is None)
    assert_true(_is_scalar_like(np.float16(1.0)))
    assert_true(not _is_scalar_like([1.0, 2.0]))


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("observation_space_shapes", test_observation_space_shapes),
    ("discrete_space_and_action", test_discrete_space_and_action),
    ("experience_normalizes_fields", test_experience_normalizes_fields),
    ("make_state_shifts_window", test_make_state_shifts_window),
    ("batcher_layout", test_batcher_layout),
    ("batcher_rejects_bad_input", test_batcher_rejects_bad_input),
    ("agent_config_validation", test_agent_config_validation),
    ("error_taxonomy", test_error_taxonomy),
    ("scalar_coercion", test_scalar_coercion),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="data")


if __name__ == "__main__":
    raise SystemExit(main())
