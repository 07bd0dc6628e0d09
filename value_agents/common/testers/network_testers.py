from __future__ import annotations

from typing import Any, Callable, List, Tuple

import torch as th
import torch.nn as nn

from value_agents.common.networks import MLPFeaturesExtractor, QNetwork, QuantileQNetwork
from value_agents.common.policies import DistributionalEstimator, Estimator, require_capability
from value_agents.common.testers.test_harness import FixedQ, FixedQuantiles, PredictOnly
from value_agents.common.testers.test_utils import (
    assert_allclose,
    assert_eq,
    assert_finite,
    assert_raises,
    assert_shape,
    assert_true,
    run_tests,
    seed_all,
)
from value_agents.common.utils.network_utils import DuelingMixin, _make_weights_init
from value_agents.common.utils.policy_utils import evaluating, fork_module


# =============================================================================
# Tests: trunk / init
# =============================================================================
def test_mlp_trunk_layout():
    trunk = MLPFeaturesExtractor(4, (8, 3), nn.Tanh)
    assert_eq(trunk.out_dim, 3)
    kinds = [type(m).__name__ for m in trunk.net]
    assert_eq(kinds, ["Linear", "Tanh", "Linear", "Tanh"])
    assert_shape(trunk(th.zeros(5, 4)), (5, 3))
    assert_raises(ValueError, lambda: MLPFeaturesExtractor(4, ()))
    assert_raises(ValueError, lambda: MLPFeaturesExtractor(4, (8, 0)))


def test_weight_init_sets_bias_and_rejects_unknown():
    layer = nn.Linear(3, 3)
    _make_weights_init("xavier_uniform", bias=0.25)(layer)
    assert_allclose(layer.bias.detach(), th.full((3,), 0.25))
    assert_raises(ValueError, lambda: _make_weights_init("bogus")(nn.Linear(2, 2)))
    assert_raises(ValueError, lambda: QNetwork(4, 2, init_type="bogus"))


# =============================================================================
# Tests: QNetwork
# =============================================================================
def test_qnetwork_shapes():
    seed_all(0)
    net = QNetwork(4, 3, hidden_sizes=(16,))
    assert_shape(net.predict(th.randn(7, 4)), (7, 3))
    # single unbatched observation
    assert_shape(net.predict(th.randn(4)), (1, 3))
    assert_finite(net(th.randn(2, 4)))


def test_qnetwork_flattens_multidim_observations():
    seed_all(0)
    net = QNetwork(6, 2, hidden_sizes=(8,))
    x = th.randn(5, 2, 3)
    assert_allclose(net.predict(x), net.predict(x.reshape(5, 6)))


def test_qnetwork_dueling_identity():
    seed_all(0)
    net = QNetwork(4, 3, hidden_sizes=(8,), dueling_mode=True)
    x = th.randn(6, 4)
    q = net.predict(x)
    feat = net.trunk(x)
    v = net.value_head(feat)
    # mean over actions of Q equals V
    assert_allclose(q.mean(dim=1, keepdim=True), v, atol=1e-5)


def test_qnetwork_rejects_bad_dims():
    assert_raises(ValueError, lambda: QNetwork(0, 2))
    assert_raises(ValueError, lambda: QNetwork(4, 0))


# =============================================================================
# Tests: QuantileQNetwork
# =============================================================================
def test_quantile_network_shapes_and_mean():
    seed_all(0)
    net = QuantileQNetwork(4, 3, n_quantiles=5, hidden_sizes=(16,))
    x = th.randn(2, 4)
    z = net.get_distribution(x)
    assert_shape(z, (2, 3, 5))
    assert_allclose(net.predict(x), z.mean(dim=-1))
    assert_shape(net(x), (2, 3, 5))
    assert_raises(ValueError, lambda: QuantileQNetwork(4, 3, n_quantiles=0))


def test_quantile_network_dueling_identity():
    seed_all(0)
    net = QuantileQNetwork(4, 3, n_quantiles=5, hidden_sizes=(8,), dueling_mode=True)
    x = th.randn(3, 4)
    z = net.get_distribution(x)
    v = net.value_head(net.trunk(x)).view(3, 1, 5)
    assert_allclose(z.mean(dim=1, keepdim=True), v, atol=1e-5)


def test_dueling_mixin_combine():
    v = th.tensor([[1.0]])
    a = th.tensor([[1.0, 3.0]])
    assert_allclose(DuelingMixin.combine_dueling(v, a), th.tensor([[0.0, 2.0]]))


# =============================================================================
# Tests: capabilities / teacher helpers
# =============================================================================
def test_capability_checks():
    q = QNetwork(4, 2, hidden_sizes=(8,))
    zq = QuantileQNetwork(4, 2, n_quantiles=3, hidden_sizes=(8,))

    assert_true(isinstance(q, Estimator))
    assert_true(not isinstance(q, DistributionalEstimator))
    assert_true(isinstance(zq, DistributionalEstimator))
    assert_true(isinstance(FixedQuantiles([[0.0]]), DistributionalEstimator))
    assert_true(isinstance(PredictOnly(), Estimator))

    assert_true(require_capability(q, Estimator) is q)
    assert_raises(TypeError, lambda: require_capability(q, DistributionalEstimator))
    assert_raises(TypeError, lambda: require_capability(object(), Estimator))


def test_fork_module_is_independent_and_frozen():
    model = FixedQ([1.0, 2.0])
    snap = fork_module(model)
    assert_true(not snap.training)
    assert_true(all(not p.requires_grad for p in snap.parameters()))

    model.set([5.0, 6.0])
    assert_allclose(snap.q.detach(), th.tensor([1.0, 2.0]))
    assert_true(model.q.requires_grad, "source must stay trainable")


def test_evaluating_restores_mode():
    net = QNetwork(4, 2, hidden_sizes=(8,))
    net.train()
    with evaluating(net) as m:
        assert_true(not m.training)
        out = m.predict(th.zeros(1, 4))
        assert_true(not out.requires_grad)
    assert_true(net.training)

    net.eval()
    with evaluating(net):
        pass
    assert_true(not net.training)


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("mlp_trunk_layout", test_mlp_trunk_layout),
    ("weight_init_sets_bias_and_rejects_unknown", test_weight_init_sets_bias_and_rejects_unknown),
    ("qnetwork_shapes", test_qnetwork_shapes),
    ("qnetwork_flattens_multidim_observations", test_qnetwork_flattens_multidim_observations),
    ("qnetwork_dueling_identity", test_qnetwork_dueling_identity),
    ("qnetwork_rejects_bad_dims", test_qnetwork_rejects_bad_dims),
    ("quantile_network_shapes_and_mean", test_quantile_network_shapes_and_mean),
    ("quantile_network_dueling_identity", test_quantile_network_dueling_identity),
    ("dueling_mixin_combine", test_dueling_mixin_combine),
    ("capability_checks", test_capability_checks),
    ("fork_module_is_independent_and_frozen", test_fork_module_is_independent_and_frozen),
    ("evaluating_restores_mode", test_evaluating_restores_mode),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="networks")


if __name__ == "__main__":
    raise SystemExit(main())
