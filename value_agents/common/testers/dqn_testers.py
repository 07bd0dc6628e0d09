from __future__ import annotations

import os
from typing import Any, Callable, List, Optional, Tuple

import numpy as np
import torch as th
import torch.nn as nn

from value_agents.baselines.q_learning.dqn import DQNAgent, dqn
from value_agents.common.config import AgentConfig
from value_agents.common.errors import CheckpointIOError, SerializationError
from value_agents.common.experience import TransitionState
from value_agents.common.policies import MODEL_FILE, OPTIMIZER_FILE, SCHEDULER_FILE
from value_agents.common.spaces import DiscreteAction
from value_agents.common.testers.test_harness import (
    FakeLogger,
    FixedQ,
    TempDir,
    make_experience,
    random_experiences,
)
from value_agents.common.testers.test_utils import (
    assert_allclose,
    assert_close,
    assert_eq,
    assert_raises,
    assert_shape,
    assert_true,
    run_tests,
    seed_all,
    state_vector,
)


# =============================================================================
# Helpers
# =============================================================================
def _stub_agent(
    values=(2.0, 3.0),
    *,
    lr: float = 0.1,
    logger: Optional[Any] = None,
    **config: Any,
) -> DQNAgent:
    model = FixedQ(values)
    opt = th.optim.SGD(model.parameters(), lr=lr)
    cfg = AgentConfig(**{"teacher_update_freq": 1000, **config})
    return DQNAgent(model, opt, (1, 4), 2, config=cfg, logger=logger)


def _small_agent(**kw: Any) -> DQNAgent:
    params = dict(
        observation_shape=(4,),
        n_actions=2,
        hidden_sizes=(16, 16),
        teacher_update_freq=1000,
        lr=1e-2,
    )
    params.update(kw)
    return dqn(**params)


# =============================================================================
# Targets / TD error
# =============================================================================
def test_td_error_terminal_target_is_reward():
    agent = _stub_agent((0.5, 0.2))
    td = agent.temporal_difference_error(0.99, [make_experience(action=0, reward=1.0, done=True)])
    assert_shape(td, (1,))
    assert_eq(td.dtype, np.float32)
    # target for the taken slot is 1.0, other slot copies the prediction
    assert_close(td[0], 0.5, atol=1e-6)


def test_td_error_bootstraps_teacher_value():
    agent = _stub_agent((2.0, 3.0))
    td = agent.temporal_difference_error(0.99, [make_experience(action=0, reward=1.0, done=False)])
    # target = 1 + 0.99 * 3 = 3.97 ; |2 - 3.97| = 1.97
    assert_close(td[0], 1.97, atol=1e-5)


def test_double_dqn_selects_with_online_model():
    double = _stub_agent((2.0, 3.0), double_dqn=True)
    vanilla = _stub_agent((2.0, 3.0), double_dqn=False)
    for agent in (double, vanilla):
        # teacher keeps [2, 3]; the online model now prefers action 0
        agent.model.set([5.0, 0.0])

    exp = [make_experience(action=0, reward=1.0, done=False)]
    # double: a* = 0 -> teacher 2 -> target 2.98 ; vanilla: max teacher 3 -> 3.97
    assert_close(double.temporal_difference_error(0.99, exp)[0], abs(5.0 - 2.98), atol=1e-5)
    assert_close(vanilla.temporal_difference_error(0.99, exp)[0], abs(5.0 - 3.97), atol=1e-5)


def test_n_step_discount_applied_to_bootstrap():
    agent = _stub_agent((2.0, 3.0), n_step=2)
    td = agent.temporal_difference_error(0.99, [make_experience(action=0, reward=1.0, done=False)])
    assert_close(td[0], abs(2.0 - (1.0 + 0.99 ** 2 * 3.0)), atol=1e-5)


def test_td_error_is_read_only():
    seed_all(0)
    agent = _small_agent()
    exps = random_experiences(8)
    agent.update(0.99, exps, np.ones(8))

    before_model = state_vector(agent.model)
    before_teacher = state_vector(agent.teacher)
    before_opt = {k: v["step"] for k, v in agent.optimizer.state_dict()["state"].items()}
    counter = agent.update_counter

    td = agent.temporal_difference_error(0.99, exps)

    assert_shape(td, (8,))
    assert_true(np.all(td >= 0.0), "TD magnitudes must be non-negative")
    assert_allclose(state_vector(agent.model), before_model)
    assert_allclose(state_vector(agent.teacher), before_teacher)
    assert_eq(agent.update_counter, counter)
    after_opt = {k: v["step"] for k, v in agent.optimizer.state_dict()["state"].items()}
    assert_eq(set(after_opt.keys()), set(before_opt.keys()))
    for k in before_opt:
        assert_allclose(after_opt[k], before_opt[k])


# =============================================================================
# Update
# =============================================================================
def test_update_huber_moves_only_taken_action():
    agent = _stub_agent((2.0, 3.0), lr=0.1)
    m = agent.update(0.99, [make_experience(action=0, reward=1.0, done=False)], [1.0])

    # huber gradient is clipped to -1 for |2 - 3.97| > 1 -> q0 += 0.1
    q = agent.model.q.detach()
    assert_close(q[0], 2.1, atol=1e-6)
    assert_close(q[1], 3.0, atol=1e-7, msg="non-taken action must not move")
    assert_close(m["loss/q"], 1.97 - 0.5, atol=1e-5)
    assert_close(m["q/mean"], 2.0, atol=1e-6)
    assert_close(m["target/mean"], 3.97, atol=1e-5)


def test_update_squared_loss_gradient():
    agent = _stub_agent((2.0, 3.0), lr=0.1, loss_function="squared")
    m = agent.update(0.99, [make_experience(action=0, reward=1.0, done=False)], [1.0])
    # d/dq (q - 3.97)^2 = -3.94 -> q0 += 0.394
    assert_close(agent.model.q.detach()[0], 2.394, atol=1e-5)
    assert_close(m["loss/q"], 1.97 ** 2, atol=1e-4)


def test_update_terminal_transition_does_not_bootstrap():
    agent = _stub_agent((0.0, 100.0), lr=0.1, loss_function="squared")
    m = agent.update(0.99, [make_experience(action=0, reward=0.5, done=True)], [1.0])
    assert_close(m["target/mean"], 0.5, atol=1e-6)
    assert_close(m["loss/q"], 0.25, atol=1e-6)


def test_importance_weights_scale_loss():
    exp = [make_experience(action=0, reward=1.0, done=True)]
    a1 = _stub_agent((0.0, 0.0), loss_function="squared")
    a2 = _stub_agent((0.0, 0.0), loss_function="squared")
    m1 = a1.update(0.99, exp, [1.0])
    m2 = a2.update(0.99, exp, np.array([0.25], dtype=np.float32))
    assert_close(m2["loss/q"], 0.25 * m1["loss/q"], atol=1e-7)

    a0 = _stub_agent((0.0, 0.0))
    a0.update(0.99, exp, th.zeros(1))
    assert_allclose(a0.model.q.detach(), th.zeros(2), msg="zero weight must not move parameters")


def test_weights_length_mismatch_raises():
    agent = _stub_agent()
    exps = [make_experience(action=0), make_experience(action=1)]
    assert_raises(ValueError, lambda: agent.update(0.99, exps, [1.0]))
    assert_eq(agent.update_counter, 0)


def test_update_metrics_and_logger():
    logger = FakeLogger()
    agent = _stub_agent(logger=logger, teacher_update_freq=2)
    m1 = agent.update(0.99, [make_experience()], [1.0])
    m2 = agent.update(0.99, [make_experience()], [1.0])

    for key in ("loss/q", "q/mean", "target/mean", "lr", "teacher/synced", "update_counter"):
        assert_true(key in m1, f"missing metric {key}")
    assert_close(m1["lr"], 0.1)
    assert_eq((m1["teacher/synced"], m2["teacher/synced"]), (0.0, 1.0))
    assert_eq([r.step for r in logger.records], [1, 2])
    assert_eq({r.prefix for r in logger.records}, {"train"})
    # buffered policy scores are drained once per logged update
    assert_eq(logger.dumps, [1, 2])


class _ModeRecordingQ(FixedQ):
    """FixedQ that remembers the train flag of every ``predict`` call."""

    def __init__(self, values) -> None:
        super().__init__(values)
        self.modes: List[bool] = []

    def predict(self, observation: th.Tensor) -> th.Tensor:
        self.modes.append(bool(self.training))
        return super().predict(observation)


def test_double_dqn_selection_runs_in_eval_mode():
    model = _ModeRecordingQ([2.0, 3.0])
    opt = th.optim.SGD(model.parameters(), lr=0.1)
    agent = DQNAgent(model, opt, (1, 4), 2, config=AgentConfig(double_dqn=True))
    agent.model.train()

    agent.update(0.99, [make_experience()], [1.0])
    # online estimate in train mode, next-state arg-max in eval mode
    assert_eq(model.modes, [True, False])
    assert_true(model.training, "update must leave the model in train mode")


def test_teacher_sync_cadence():
    seed_all(0)
    agent = _small_agent(teacher_update_freq=3)
    exps = random_experiences(4)

    synced_at: List[int] = []
    for _ in range(7):
        teacher_before = state_vector(agent.teacher)
        m = agent.update(0.99, exps, np.ones(4))
        teacher_after = state_vector(agent.teacher)
        if m["teacher/synced"] == 1.0:
            synced_at.append(agent.update_counter)
            assert_allclose(teacher_after, state_vector(agent.model), msg="teacher must equal model after sync")
        else:
            assert_allclose(teacher_after, teacher_before, msg="teacher must not change between syncs")

    assert_eq(synced_at, [3, 6])
    assert_eq(agent.update_counter, 7)
    assert_true(all(not p.requires_grad for p in agent.teacher.parameters()), "teacher must be frozen")


def test_gradient_clipping_reports_norm():
    agent = _stub_agent((0.0, 0.0), loss_function="squared", max_grad_norm=0.5)
    m = agent.update(0.99, [make_experience(action=0, reward=10.0, done=True)], [1.0])
    # raw gradient -20 clipped to norm 0.5 -> q0 moves by lr * 0.5
    assert_close(m["grad/norm"], 20.0, atol=1e-4)
    assert_close(agent.model.q.detach()[0], 0.05, atol=1e-6)


def test_parameters_change_after_update():
    seed_all(0)
    agent = _small_agent()
    before = state_vector(agent.model)
    agent.update(0.99, random_experiences(16), np.ones(16))
    after = state_vector(agent.model)
    assert_true(float(th.linalg.vector_norm(after - before)) > 0.0, "expected model params to change")


# =============================================================================
# Policy / make_state
# =============================================================================
def test_policy_argmax_and_mode_restored():
    agent = _stub_agent((2.0, 3.0))
    agent.model.train()
    action = agent.policy(np.zeros((4,), dtype=np.float32))
    assert_true(isinstance(action, DiscreteAction))
    assert_eq(int(action), 1)
    assert_true(agent.model.training, "policy must restore train mode")

    agent.model.eval()
    agent.policy([0.0, 0.0, 0.0, 0.0])
    assert_true(not agent.model.training, "policy must restore eval mode")


def test_policy_rejects_wrong_size():
    agent = _stub_agent()
    assert_raises(ValueError, lambda: agent.policy(np.zeros((3,), dtype=np.float32)))


def test_policy_records_scores():
    logger = FakeLogger()
    agent = _stub_agent((2.0, 3.0), logger=logger)
    agent.policy(np.zeros(4))
    rec = logger.recorded[-1]
    assert_eq(rec.prefix, "policy")
    assert_close(float(rec.metrics["q_max"]), 3.0)
    assert_close(float(rec.metrics["q_mean"]), 2.5)


def test_make_state_shifts_window():
    agent = _stub_agent()
    prev = TransitionState(observation=np.zeros(4, dtype=np.float32), next_observation=np.ones(4, dtype=np.float32))
    nxt = agent.make_state(np.full(4, 2.0), prev)
    assert_allclose(nxt.observation, np.ones(4))
    assert_allclose(nxt.next_observation, np.full(4, 2.0))
    assert_allclose(prev.next_observation, np.ones(4), msg="previous state must be untouched")


# =============================================================================
# Construction
# =============================================================================
def test_construction_requires_estimator():
    lin = nn.Linear(4, 2)
    opt = th.optim.SGD(lin.parameters(), lr=0.1)
    assert_raises(TypeError, lambda: DQNAgent(lin, opt, (1, 4), 2))


def test_config_validation():
    assert_raises(ValueError, lambda: AgentConfig(teacher_update_freq=0))
    assert_raises(ValueError, lambda: AgentConfig(n_step=0))
    assert_raises(ValueError, lambda: AgentConfig(max_grad_norm=-1.0))
    assert_raises(ValueError, lambda: AgentConfig(loss_function="l1"))
    assert_raises(ValueError, lambda: _small_agent(teacher_update_freq=0))


def test_batch_errors_surface():
    agent = _stub_agent()
    assert_raises(ValueError, lambda: agent.temporal_difference_error(0.99, []))
    assert_raises(ValueError, lambda: agent.update(0.99, [make_experience(action=5)], [1.0]))
    assert_raises(ValueError, lambda: agent.update(1.5, [make_experience()], [1.0]))


# =============================================================================
# Persistence
# =============================================================================
def test_save_load_roundtrip():
    seed_all(0)
    exps = random_experiences(8)
    agent1 = _small_agent(sched_name="step", step_size=2, sched_gamma=0.5)
    for _ in range(3):
        agent1.update(0.99, exps, np.ones(8))

    with TempDir() as d:
        path = os.path.join(d, "ckpt")
        agent1.save(path)
        for name in (MODEL_FILE, OPTIMIZER_FILE, SCHEDULER_FILE):
            assert_true(os.path.isfile(os.path.join(path, name)), f"missing {name}")

        seed_all(1)
        agent2 = _small_agent(sched_name="step", step_size=2, sched_gamma=0.5)
        agent2.load(path)

    obs = th.randn(5, 4)
    with th.no_grad():
        assert_allclose(agent2.model.predict(obs), agent1.model.predict(obs))
        assert_allclose(agent2.teacher.predict(obs), agent2.model.predict(obs))
    assert_eq(agent2.scheduler.last_epoch, agent1.scheduler.last_epoch)
    assert_close(agent2.optimizer.param_groups[0]["lr"], agent1.optimizer.param_groups[0]["lr"])
    assert_eq(len(agent2.optimizer.state_dict()["state"]), len(agent1.optimizer.state_dict()["state"]))


def test_save_without_scheduler_writes_empty_mapping():
    agent = _stub_agent()
    with TempDir() as d:
        agent.save(d)
        payload = th.load(os.path.join(d, SCHEDULER_FILE), weights_only=True)
    assert_eq(payload, {})


def test_partial_and_missing_load():
    seed_all(0)
    agent1 = _small_agent()
    agent1.update(0.99, random_experiences(4), np.ones(4))

    with TempDir() as d:
        agent1.save(d)
        os.remove(os.path.join(d, OPTIMIZER_FILE))
        os.remove(os.path.join(d, SCHEDULER_FILE))

        seed_all(3)
        agent2 = _small_agent()
        agent2.load(d)
        assert_allclose(state_vector(agent2.model), state_vector(agent1.model))
        assert_eq(len(agent2.optimizer.state_dict()["state"]), 0)

        before = state_vector(agent2.model)
        agent2.load(os.path.join(d, "does_not_exist"))
        assert_allclose(state_vector(agent2.model), before)


def test_load_errors_map_to_serialization_error():
    agent = _small_agent()
    with TempDir() as d:
        path = os.path.join(d, MODEL_FILE)
        th.save(agent.model.state_dict(), path)
        with open(path, "rb") as f:
            raw = f.read()
        with open(path, "wb") as f:
            f.write(raw[: len(raw) // 2])
        err = assert_raises(SerializationError, lambda: agent.load(d))
        assert_true(MODEL_FILE in str(err), "error must name the path")

    with TempDir() as d:
        th.save([1, 2, 3], os.path.join(d, MODEL_FILE))
        assert_raises(SerializationError, lambda: agent.load(d))

    with TempDir() as d:
        _small_agent(hidden_sizes=(8,)).save(d)
        assert_raises(SerializationError, lambda: agent.load(d))


def test_save_io_error():
    agent = _stub_agent()
    with TempDir() as d:
        blocker = os.path.join(d, "blocker")
        with open(blocker, "w", encoding="utf-8") as f:
            f.write("x")
        err = assert_raises(CheckpointIOError, lambda: agent.save(os.path.join(blocker, "sub")))
        assert_true(isinstance(err, OSError), "CheckpointIOError must be an OSError")
        assert_eq(err.operation, "save")


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("td_error_terminal_target_is_reward", test_td_error_terminal_target_is_reward),
    ("td_error_bootstraps_teacher_value", test_td_error_bootstraps_teacher_value),
    ("double_dqn_selects_with_online_model", test_double_dqn_selects_with_online_model),
    ("n_step_discount_applied_to_bootstrap", test_n_step_discount_applied_to_bootstrap),
    ("td_error_is_read_only", test_td_error_is_read_only),
    ("update_huber_moves_only_taken_action", test_update_huber_moves_only_taken_action),
    ("update_squared_loss_gradient", test_update_squared_loss_gradient),
    ("update_terminal_transition_does_not_bootstrap", test_update_terminal_transition_does_not_bootstrap),
    ("importance_weights_scale_loss", test_importance_weights_scale_loss),
    ("weights_length_mismatch_raises", test_weights_length_mismatch_raises),
    ("update_metrics_and_logger", test_update_metrics_and_logger),
    ("double_dqn_selection_runs_in_eval_mode", test_double_dqn_selection_runs_in_eval_mode),
    ("teacher_sync_cadence", test_teacher_sync_cadence),
    ("gradient_clipping_reports_norm", test_gradient_clipping_reports_norm),
    ("parameters_change_after_update", test_parameters_change_after_update),
    ("policy_argmax_and_mode_restored", test_policy_argmax_and_mode_restored),
    ("policy_rejects_wrong_size", test_policy_rejects_wrong_size),
    ("policy_records_scores", test_policy_records_scores),
    ("make_state_shifts_window", test_make_state_shifts_window),
    ("construction_requires_estimator", test_construction_requires_estimator),
    ("config_validation", test_config_validation),
    ("batch_errors_surface", test_batch_errors_surface),
    ("save_load_roundtrip", test_save_load_roundtrip),
    ("save_without_scheduler_writes_empty_mapping", test_save_without_scheduler_writes_empty_mapping),
    ("partial_and_missing_load", test_partial_and_missing_load),
    ("load_errors_map_to_serialization_error", test_load_errors_map_to_serialization_error),
    ("save_io_error", test_save_io_error),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="dqn")


if __name__ == "__main__":
    raise SystemExit(main())
