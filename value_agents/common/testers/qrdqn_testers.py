from __future__ import annotations

import os
from typing import Any, Callable, List, Tuple

import numpy as np
import torch as th

from value_agents.baselines.q_learning.qrdqn import QRDQNAgent, qrdqn
from value_agents.common.config import AgentConfig
from value_agents.common.testers.test_harness import (
    FixedQuantiles,
    PredictOnly,
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
from value_agents.common.utils.policy_utils import quantile_fractions, quantile_regression_weights


# =============================================================================
# Helpers
# =============================================================================
def _stub_agent(table, *, lr: float = 0.1, **config: Any) -> QRDQNAgent:
    model = FixedQuantiles(table)
    opt = th.optim.SGD(model.parameters(), lr=lr)
    cfg = AgentConfig(**{"teacher_update_freq": 1000, **config})
    return QRDQNAgent(model, opt, (1, 4), len(table), config=cfg)


def _small_agent(**kw: Any) -> QRDQNAgent:
    params = dict(
        observation_shape=(4,),
        n_actions=2,
        n_quantiles=8,
        hidden_sizes=(16, 16),
        teacher_update_freq=1000,
        lr=1e-2,
    )
    params.update(kw)
    return qrdqn(**params)


# =============================================================================
# Quantile weights
# =============================================================================
def test_quantile_fractions_midpoints():
    assert_allclose(quantile_fractions(4), th.tensor([0.125, 0.375, 0.625, 0.875]))
    assert_raises(ValueError, lambda: quantile_fractions(0))


def test_quantile_weight_sign_property():
    tau = quantile_fractions(2)                       # [0.25, 0.75]
    td = th.tensor([[[1.0, -1.0], [0.0, -2.0]]])      # (1, N=2, Nt=2)
    w = quantile_regression_weights(td, tau)
    # td >= 0 -> tau ; td < 0 -> 1 - tau (tau indexed by the predicted quantile)
    assert_allclose(w, th.tensor([[[0.25, 0.75], [0.75, 0.25]]]))
    assert_true(bool(((w >= 0.0) & (w <= 1.0)).all()), "weights must lie in [0, 1]")
    assert_true(not w.requires_grad, "weights must be detached")


def test_quantile_weights_validate_shapes():
    assert_raises(ValueError, lambda: quantile_regression_weights(th.zeros(2, 3), quantile_fractions(3)))
    assert_raises(ValueError, lambda: quantile_regression_weights(th.zeros(1, 3, 3), quantile_fractions(2)))


# =============================================================================
# Update
# =============================================================================
def test_terminal_target_is_reward():
    agent = _stub_agent([[0.0, 0.0], [5.0, 7.0]])
    m = agent.update(0.99, [make_experience(action=0, reward=1.0, done=True)], [1.0])
    assert_close(m["target/mean"], 1.0, atol=1e-6)
    assert_close(m["q/mean"], 0.0, atol=1e-6)


def test_bootstrap_target_uses_selected_action_quantiles():
    # predict = [2, 0] -> a* = 0 for both online and teacher
    agent = _stub_agent([[1.0, 2.0, 3.0], [0.0, 0.0, 0.0]], double_dqn=False)
    m = agent.update(0.5, [make_experience(action=1, reward=0.0, done=False)], [1.0])
    # target = 0.5 * [1, 2, 3]
    assert_close(m["target/mean"], 1.0, atol=1e-6)


def test_double_dqn_bootstraps_from_online_argmax():
    table = [[1.0, 1.0], [0.0, 0.0]]
    double = _stub_agent(table, double_dqn=True)
    vanilla = _stub_agent(table, double_dqn=False)
    for agent in (double, vanilla):
        # teacher keeps means [1, 0]; the online model now prefers action 1
        agent.model.set([[0.0, 0.0], [5.0, 5.0]])

    exp = [make_experience(action=0, reward=0.0, done=False)]
    # double: a* = 1 -> teacher [0, 0] ; vanilla: a* = 0 -> 0.5 * [1, 1]
    assert_close(double.update(0.5, exp, [1.0])["target/mean"], 0.0, atol=1e-6)
    assert_close(vanilla.update(0.5, exp, [1.0])["target/mean"], 0.5, atol=1e-6)


def test_n_step_batch_loss_matches_reference():
    # means [1, 4] -> a* = 1 ; gamma**2 = 0.25 -> bootstrap quantiles [1, 1]
    agent = _stub_agent([[0.0, 2.0], [4.0, 4.0]], n_step=2)
    exps = [
        make_experience(action=0, reward=0.0, done=False),
        make_experience(action=1, reward=3.0, done=True),
    ]
    m = agent.update(0.5, exps, [2.0, 0.5])

    # sample 0: pred [0, 2] vs target [1, 1] ; sample 1: pred [4, 4] vs target [3, 3]
    pred = th.tensor([[0.0, 2.0], [4.0, 4.0]]).unsqueeze(-1)   # (B, N, 1)
    target = th.tensor([[1.0, 1.0], [3.0, 3.0]]).unsqueeze(1)  # (B, 1, N)
    td = target - pred
    huber = th.where(td.abs() <= 1.0, 0.5 * td ** 2, td.abs() - 0.5)
    tau = th.tensor([0.25, 0.75]).view(1, 2, 1)
    per_sample = (huber * (tau - (td < 0).float()).abs()).mean(dim=2).sum(dim=1)
    assert_allclose(per_sample, th.tensor([0.25, 0.5]))
    reference = (per_sample * th.tensor([2.0, 0.5])).mean()

    assert_close(m["loss/q"], float(reference), atol=1e-6)
    assert_close(m["loss/q"], 0.375, atol=1e-6)
    assert_close(m["target/mean"], 2.0, atol=1e-6)
    assert_close(m["q/mean"], 2.5, atol=1e-6)


def test_quantile_update_exact_step():
    # one action, two quantiles at 0; terminal reward 1 -> every pairwise td = +1
    agent = _stub_agent([[0.0, 0.0]], lr=0.1)
    m = agent.update(0.99, [make_experience(action=0, reward=1.0, done=True)], [1.0])

    # huber(1) = 0.5, weights tau = [0.25, 0.75]: loss = 0.5 * (0.25 + 0.75)
    assert_close(m["loss/q"], 0.5, atol=1e-6)
    # gradient on z_i is -tau_i -> z = lr * tau
    assert_allclose(agent.model.z.detach(), th.tensor([[0.025, 0.075]]), atol=1e-6)
    assert_close(m["quantile/spread"], 0.0, atol=1e-7)


def test_only_taken_action_quantiles_move():
    agent = _stub_agent([[0.0, 1.0], [2.0, 3.0]], lr=0.1)
    agent.update(0.99, [make_experience(action=1, reward=0.0, done=True)], [1.0])
    z = agent.model.z.detach()
    assert_allclose(z[0], th.tensor([0.0, 1.0]), msg="non-taken action must not move")
    assert_true(bool((z[1] < th.tensor([2.0, 3.0])).all()), "taken quantiles must move toward 0")


def test_importance_weight_zero_freezes_parameters():
    agent = _stub_agent([[0.0, 1.0], [2.0, 3.0]])
    before = state_vector(agent.model)
    m = agent.update(0.99, [make_experience(action=0, reward=5.0, done=True)], np.zeros(1))
    assert_allclose(state_vector(agent.model), before)
    assert_close(m["loss/q"], 0.0)


def test_update_metrics_and_param_change():
    seed_all(0)
    agent = _small_agent()
    exps = random_experiences(16)
    before = state_vector(agent.model)
    m = agent.update(0.99, exps, np.ones(16))

    for key in ("loss/q", "q/mean", "target/mean", "lr", "teacher/synced", "update_counter", "quantile/spread"):
        assert_true(key in m, f"missing metric {key}")
    assert_true(np.isfinite(m["loss/q"]), "loss must be finite")
    assert_true(float(th.linalg.vector_norm(state_vector(agent.model) - before)) > 0.0, "params must change")
    assert_eq(agent.update_counter, 1)


def test_teacher_sync_cadence():
    seed_all(0)
    agent = _small_agent(teacher_update_freq=2)
    exps = random_experiences(4)
    flags = [agent.update(0.99, exps, np.ones(4))["teacher/synced"] for _ in range(5)]
    assert_eq(flags, [0.0, 1.0, 0.0, 1.0, 0.0])


def test_td_error_uses_scalar_projection():
    # predict = [2, 0]; terminal reward 1 on action 0 -> |2 - 1|
    agent = _stub_agent([[1.0, 2.0, 3.0], [0.0, 0.0, 0.0]])
    td = agent.temporal_difference_error(0.99, [make_experience(action=0, reward=1.0, done=True)])
    assert_shape(td, (1,))
    assert_close(td[0], 1.0, atol=1e-6)


def test_policy_uses_quantile_mean():
    agent = _stub_agent([[0.0, 10.0], [4.0, 4.5]])
    assert_eq(int(agent.policy(np.zeros(4))), 0)


def test_requires_distributional_estimator():
    model = PredictOnly()
    opt = th.optim.SGD(model.parameters(), lr=0.1)
    assert_raises(TypeError, lambda: QRDQNAgent(model, opt, (1, 4), 2))


# =============================================================================
# Persistence
# =============================================================================
def test_save_load_roundtrip():
    seed_all(0)
    agent1 = _small_agent(sched_name="linear", total_steps=10)
    exps = random_experiences(8)
    for _ in range(2):
        agent1.update(0.99, exps, np.ones(8))

    with TempDir() as d:
        agent1.save(d)
        seed_all(7)
        agent2 = _small_agent(sched_name="linear", total_steps=10)
        agent2.load(d)
        assert_true(os.path.isfile(os.path.join(d, "scheduler.pt")))

    obs = th.randn(3, 4)
    with th.no_grad():
        assert_allclose(agent2.model.get_distribution(obs), agent1.model.get_distribution(obs))
        assert_allclose(agent2.teacher.get_distribution(obs), agent1.model.get_distribution(obs))
    assert_eq(agent2.scheduler.last_epoch, 2)


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("quantile_fractions_midpoints", test_quantile_fractions_midpoints),
    ("quantile_weight_sign_property", test_quantile_weight_sign_property),
    ("quantile_weights_validate_shapes", test_quantile_weights_validate_shapes),
    ("terminal_target_is_reward", test_terminal_target_is_reward),
    ("bootstrap_target_uses_selected_action_quantiles", test_bootstrap_target_uses_selected_action_quantiles),
    ("double_dqn_bootstraps_from_online_argmax", test_double_dqn_bootstraps_from_online_argmax),
    ("n_step_batch_loss_matches_reference", test_n_step_batch_loss_matches_reference),
    ("quantile_update_exact_step", test_quantile_update_exact_step),
    ("only_taken_action_quantiles_move", test_only_taken_action_quantiles_move),
    ("importance_weight_zero_freezes_parameters", test_importance_weight_zero_freezes_parameters),
    ("update_metrics_and_param_change", test_update_metrics_and_param_change),
    ("teacher_sync_cadence", test_teacher_sync_cadence),
    ("td_error_uses_scalar_projection", test_td_error_uses_scalar_projection),
    ("policy_uses_quantile_mean", test_policy_uses_quantile_mean),
    ("requires_distributional_estimator", test_requires_distributional_estimator),
    ("save_load_roundtrip", test_save_load_roundtrip),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="qrdqn")


if __name__ == "__main__":
    raise SystemExit(main())
