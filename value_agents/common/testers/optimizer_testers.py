from __future__ import annotations

from typing import Any, Callable, List, Tuple

import torch as th
import torch.nn as nn
from torch.optim.lr_scheduler import LRScheduler

from value_agents.common.optimizers import (
    build_optimizer,
    build_scheduler,
    clip_grad_norm,
    current_lr,
    load_optimizer_state_dict,
    load_scheduler_state_dict,
    optimizer_state_dict,
    scheduler_state_dict,
)
from value_agents.common.testers.test_utils import (
    assert_close,
    assert_eq,
    assert_raises,
    assert_true,
    run_tests,
    seed_all,
)


def _tiny() -> nn.Module:
    return nn.Linear(4, 2)


def _lrs(opt, sched, n: int) -> List[float]:
    out = []
    for _ in range(n):
        out.append(current_lr(opt))
        opt.step()
        sched.step()
    return out


# =============================================================================
# Tests: optimizer factory
# =============================================================================
def test_build_optimizer_variants():
    expected = {
        "adam": th.optim.Adam,
        "AdamW": th.optim.AdamW,
        "adam_weight_decay": th.optim.AdamW,
        "sgd": th.optim.SGD,
        "rms-prop": th.optim.RMSprop,
        "radam": th.optim.RAdam,
    }
    for name, cls in expected.items():
        opt = build_optimizer(_tiny().parameters(), name=name, lr=1e-3)
        assert_true(isinstance(opt, cls), f"{name} built {type(opt).__name__}")
        assert_close(current_lr(opt), 1e-3)


def test_build_optimizer_rejects_bad_input():
    assert_raises(ValueError, lambda: build_optimizer(_tiny().parameters(), name="lion"))
    assert_raises(ValueError, lambda: build_optimizer(_tiny().parameters(), lr=0.0))
    assert_raises(ValueError, lambda: build_optimizer(_tiny().parameters(), weight_decay=-1.0))
    assert_raises(ValueError, lambda: build_optimizer(_tiny().parameters(), betas=(1.0, 0.9)))


def test_clip_grad_norm_scales_and_reports():
    p = nn.Parameter(th.zeros(2))
    p.grad = th.tensor([3.0, 4.0])
    norm = clip_grad_norm([p], max_norm=1.0)
    assert_close(norm, 5.0, rtol=1e-6)
    assert_close(float(p.grad.norm()), 1.0, rtol=1e-5)


def test_clip_grad_norm_disabled_is_noop():
    p = nn.Parameter(th.zeros(2))
    p.grad = th.tensor([3.0, 4.0])
    assert_eq(clip_grad_norm([p], max_norm=0.0), 0.0)
    assert_close(float(p.grad.norm()), 5.0)


def test_optimizer_state_roundtrip():
    seed_all(0)
    m1 = _tiny()
    opt1 = build_optimizer(m1.parameters(), name="adam", lr=1e-2)
    m1(th.randn(3, 4)).sum().backward()
    opt1.step()

    m2 = _tiny()
    opt2 = build_optimizer(m2.parameters(), name="adam", lr=1e-2)
    load_optimizer_state_dict(opt2, optimizer_state_dict(opt1))
    st = opt2.state_dict()["state"]
    assert_eq(len(st), 2)
    assert_close(float(st[0]["step"]), 1.0)


# =============================================================================
# Tests: schedulers
# =============================================================================
def test_none_scheduler():
    opt = build_optimizer(_tiny().parameters(), lr=1.0)
    assert_true(build_scheduler(opt, name="none") is None)
    assert_true(build_scheduler(opt, name="Constant") is None)
    assert_eq(scheduler_state_dict(None), {})
    load_scheduler_state_dict(None, {"last_epoch": 3})


def test_linear_schedule_with_warmup():
    opt = build_optimizer(_tiny().parameters(), name="sgd", lr=1.0)
    sched = build_scheduler(opt, name="linear", total_steps=4, warmup_steps=2)
    lrs = _lrs(opt, sched, 5)
    # warmup 1/2, 2/2 then decay over the remaining 2 steps
    for got, want in zip(lrs, [0.5, 1.0, 1.0, 0.5, 0.0]):
        assert_close(got, want, atol=1e-9)


def test_cosine_schedule_floor():
    opt = build_optimizer(_tiny().parameters(), name="sgd", lr=1.0)
    sched = build_scheduler(opt, name="cosine", total_steps=2, min_lr_ratio=0.1)
    lrs = _lrs(opt, sched, 4)
    assert_close(lrs[0], 1.0)
    assert_close(lrs[1], 0.55, atol=1e-9)
    assert_close(lrs[3], 0.1, atol=1e-9)


def test_poly_and_classic_schedules():
    opt = build_optimizer(_tiny().parameters(), name="sgd", lr=1.0)
    sched = build_scheduler(opt, name="poly", total_steps=2, poly_power=2.0)
    assert_close(_lrs(opt, sched, 2)[1], 0.25, atol=1e-9)

    opt = build_optimizer(_tiny().parameters(), name="sgd", lr=1.0)
    sched = build_scheduler(opt, name="step", step_size=2, gamma=0.5)
    assert_eq([round(x, 6) for x in _lrs(opt, sched, 4)], [1.0, 1.0, 0.5, 0.5])

    opt = build_optimizer(_tiny().parameters(), name="sgd", lr=1.0)
    sched = build_scheduler(opt, name="multistep", milestones=[3, 1, 1], gamma=0.1)
    assert_eq([round(x, 6) for x in _lrs(opt, sched, 4)], [1.0, 0.1, 0.1, 0.01])

    opt = build_optimizer(_tiny().parameters(), name="sgd", lr=1.0)
    sched = build_scheduler(opt, name="exponential", gamma=0.5)
    assert_eq([round(x, 6) for x in _lrs(opt, sched, 3)], [1.0, 0.5, 0.25])


def test_schedulers_are_public_lr_schedulers():
    for name, kw in (
        ("linear", {"total_steps": 4}),
        ("cosine", {"total_steps": 4}),
        ("step", {"step_size": 2}),
        ("multistep", {"milestones": [2]}),
        ("exponential", {"gamma": 0.5}),
    ):
        opt = build_optimizer(_tiny().parameters(), name="sgd", lr=1.0)
        assert_true(isinstance(build_scheduler(opt, name=name, **kw), LRScheduler), name)


def test_scheduler_rejects_bad_input():
    opt = build_optimizer(_tiny().parameters(), lr=1.0)
    assert_raises(ValueError, lambda: build_scheduler(opt, name="onecycle"))
    assert_raises(ValueError, lambda: build_scheduler(opt, name="linear", total_steps=0))
    assert_raises(ValueError, lambda: build_scheduler(opt, name="warmup_cosine", total_steps=10))
    assert_raises(ValueError, lambda: build_scheduler(opt, name="multistep"))
    assert_raises(ValueError, lambda: build_scheduler(opt, name="step", gamma=0.0))
    assert_raises(ValueError, lambda: build_scheduler(opt, name="linear", total_steps=5, min_lr_ratio=2.0))


def test_scheduler_state_roundtrip():
    opt = build_optimizer(_tiny().parameters(), name="sgd", lr=1.0)
    sched = build_scheduler(opt, name="step", step_size=1, gamma=0.5)
    _lrs(opt, sched, 3)

    opt2 = build_optimizer(_tiny().parameters(), name="sgd", lr=1.0)
    sched2 = build_scheduler(opt2, name="step", step_size=1, gamma=0.5)
    load_scheduler_state_dict(sched2, scheduler_state_dict(sched))
    assert_eq(sched2.last_epoch, 3)

    # an empty state leaves the scheduler untouched
    load_scheduler_state_dict(sched2, {})
    assert_eq(sched2.last_epoch, 3)


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("build_optimizer_variants", test_build_optimizer_variants),
    ("build_optimizer_rejects_bad_input", test_build_optimizer_rejects_bad_input),
    ("clip_grad_norm_scales_and_reports", test_clip_grad_norm_scales_and_reports),
    ("clip_grad_norm_disabled_is_noop", test_clip_grad_norm_disabled_is_noop),
    ("optimizer_state_roundtrip", test_optimizer_state_roundtrip),
    ("none_scheduler", test_none_scheduler),
    ("linear_schedule_with_warmup", test_linear_schedule_with_warmup),
    ("cosine_schedule_floor", test_cosine_schedule_floor),
    ("poly_and_classic_schedules", test_poly_and_classic_schedules),
    ("schedulers_are_public_lr_schedulers", test_schedulers_are_public_lr_schedulers),
    ("scheduler_rejects_bad_input", test_scheduler_rejects_bad_input),
    ("scheduler_state_roundtrip", test_scheduler_state_roundtrip),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="optimizers")


if __name__ == "__main__":
    raise SystemExit(main())
