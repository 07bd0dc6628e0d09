from __future__ import annotations

import csv
import json
import os
from typing import Any, Callable, Dict, List, Tuple

import numpy as np
import torch as th

from value_agents.baselines.q_learning.dqn import DQNAgent, dqn
from value_agents.common.loggers import (
    CSVWriter,
    JSONLWriter,
    Logger,
    SafeWriter,
    build_logger,
)
from value_agents.common.loggers import tensorboard_writer
from value_agents.common.testers.test_harness import (
    FailingWriter,
    FixedQ,
    MemoryWriter,
    TempDir,
    make_experience,
    random_experiences,
)
from value_agents.common.testers.test_utils import (
    assert_close,
    assert_eq,
    assert_in,
    assert_raises,
    assert_true,
    read_text,
    run_tests,
    seed_all,
)


def _quiet_logger(d: str, **kw: Any) -> Logger:
    params: Dict[str, Any] = dict(log_dir=d, exp_name="exp", run_id="r0", console_every=0, flush_every=0)
    params.update(kw)
    return Logger(**params)


def _read_jsonl(path: str) -> List[Dict[str, Any]]:
    return [json.loads(ln) for ln in read_text(path).splitlines() if ln.strip()]


def _read_csv(path: str) -> List[List[str]]:
    with open(path, "r", newline="", encoding="utf-8") as f:
        return [r for r in csv.reader(f)]


# =============================================================================
# Tests: writers
# =============================================================================
def test_jsonl_writer_writes_lines():
    with TempDir() as d:
        w = JSONLWriter(d, filename="m.jsonl")
        w.write({"a": 1.0, "step": 3.0})
        w.write({"b": 2.5, "step": 4.0})
        w.close()
        w.close()

        rows = _read_jsonl(os.path.join(d, "m.jsonl"))
        assert_eq(len(rows), 2, "jsonl line count mismatch")
        assert_eq(rows[0], {"a": 1.0, "step": 3.0})
        assert_eq(rows[1], {"b": 2.5, "step": 4.0})
        assert_raises(ValueError, lambda: w.write({"a": 1.0}))


def test_csv_writer_freezes_schema_on_first_row():
    with TempDir() as d:
        w = CSVWriter(d, filename="wide.csv")
        w.write({"step": 1.0, "k1": 10.0, "k2": 20.0})
        w.write({"step": 2.0, "k1": 11.0, "NEW": 999.0})
        w.close()

        rows = _read_csv(os.path.join(d, "wide.csv"))
        assert_eq(rows[0], ["step", "k1", "k2"])
        assert_eq(rows[1], ["1.0", "10.0", "20.0"])
        # NEW is dropped, missing k2 is blank
        assert_eq(rows[2], ["2.0", "11.0", ""])
        assert_raises(ValueError, lambda: w.write({"step": 3.0}))


def test_csv_writer_resume_keeps_header():
    with TempDir() as d:
        w = CSVWriter(d)
        w.write({"step": 1.0, "loss": 0.5})
        w.close()

        w2 = CSVWriter(d)
        w2.write({"loss": 0.25, "step": 2.0, "extra": 1.0})
        w2.close()

        rows = _read_csv(os.path.join(d, "metrics.csv"))
        assert_eq(len(rows), 3, "resumed file must keep a single header")
        assert_eq(rows[0], ["step", "loss"])
        assert_eq(rows[2], ["2.0", "0.25"])


def test_safe_writer_counts_failures():
    sw = SafeWriter(FailingWriter(), name="bad")
    sw.write({"a": 1.0})
    sw.flush()
    sw.close()
    assert_eq(sw.failures, 3)
    assert_eq(sw.name, "bad")
    assert_true(isinstance(sw.last_error, OSError))


def test_tensorboard_writer_availability():
    with TempDir() as d:
        if tensorboard_writer.SummaryWriter is None:
            assert_raises(RuntimeError, lambda: tensorboard_writer.TensorBoardWriter(d))
            return
        w = tensorboard_writer.TensorBoardWriter(d)
        w.write({"train/loss/q": 0.5, "step": 1.0, "wall_time": 0.0, "timestamp": 0.0})
        w.close()
        events = [f for f in os.listdir(d) if f.startswith("events.out.tfevents")]
        assert_true(len(events) >= 1, "expected a TensorBoard event file")


# =============================================================================
# Tests: Logger frontend
# =============================================================================
def test_log_prefixes_keys_and_adds_meta():
    with TempDir() as d:
        mem = MemoryWriter()
        lg = _quiet_logger(d, writers=[mem])
        row = lg.log({"loss/q": th.tensor(0.5), "lr": np.float32(1e-3), "vec": [1.0, 2.0]}, step=7, prefix="train")

        assert_eq(len(mem.rows), 1)
        assert_eq(mem.rows[0], row)
        assert_close(row["train/loss/q"], 0.5)
        assert_close(row["train/lr"], 1e-3, rtol=1e-6)
        assert_true("train/vec" not in row, "vectors must be skipped")
        assert_eq(row["step"], 7.0)
        assert_in("wall_time", row)
        assert_in("timestamp", row)


def test_drop_non_finite():
    with TempDir() as d:
        lg = _quiet_logger(d, drop_non_finite=True)
        row = lg.log({"a": float("nan"), "b": float("inf"), "c": 1.0}, step=0)
        assert_true("a" not in row and "b" not in row)
        assert_eq(row["c"], 1.0)


def test_key_throttling():
    with TempDir() as d:
        lg = _quiet_logger(d)
        lg.set_key_every({"train/slow": 2})
        seen = ["train/slow" in lg.log({"slow": 1.0, "fast": 1.0}, step=s, prefix="train") for s in range(4)]
        assert_eq(seen, [True, False, True, False])

        lg.set_key_every({"train/slow": 0})
        assert_in("train/slow", lg.log({"slow": 1.0}, step=1, prefix="train"))


def test_record_and_dump():
    with TempDir() as d:
        mem = MemoryWriter()
        lg = _quiet_logger(d, writers=[mem])
        lg.record({"q_max": 1.0}, prefix="policy")
        lg.record({"q_max": 3.0}, prefix="policy")
        assert_eq(len(mem.rows), 0, "record must not write")

        row = lg.dump(step=5, agg="max", clear=False)
        assert_eq(row["policy/q_max"], 3.0)
        row = lg.dump(step=6)
        assert_eq(row["policy/q_max"], 2.0)
        assert_true(lg.dump(step=7) is None, "empty buffer dumps nothing")
        assert_eq(len(mem.rows), 2)

        assert_raises(ValueError, lambda: lg.dump(agg="median"))


def test_step_inference():
    class _Agent:
        update_counter = 0

    with TempDir() as d:
        lg = _quiet_logger(d)
        assert_eq(lg.log({"a": 1.0})["step"], 0.0)

        lg.set_step_fn(lambda: 42)
        assert_eq(lg.log({"a": 1.0})["step"], 42.0)

        agent = _Agent()
        lg.bind_agent(agent)
        agent.update_counter = 9
        assert_eq(lg.log({"a": 1.0})["step"], 9.0)
        assert_eq(lg.log({"a": 1.0}, step=3)["step"], 3.0)


def test_writer_failures_recorded_when_not_strict():
    with TempDir() as d:
        mem = MemoryWriter()
        lg = _quiet_logger(d, writers=[FailingWriter(), mem])
        lg.log({"a": 1.0}, step=1)
        lg.close()

        assert_eq(len(mem.rows), 1, "healthy writers still receive rows")
        assert_true(mem.closed)
        assert_eq(len(lg.errors), 3)
        assert_in("writer.write(FailingWriter)", lg.errors[0])


def test_writer_failures_raise_when_strict():
    with TempDir() as d:
        lg = _quiet_logger(d, writers=[FailingWriter()], strict=True)
        assert_raises(OSError, lambda: lg.log({"a": 1.0}, step=1))


def test_periodic_flush_and_context_manager():
    with TempDir() as d:
        mem = MemoryWriter()
        with _quiet_logger(d, writers=[mem], flush_every=2) as lg:
            for s in range(4):
                lg.log({"a": float(s)}, step=s)
            assert_eq(mem.flushes, 2)
        assert_true(mem.closed, "context exit must close writers")


def test_run_dir_and_config_files():
    with TempDir() as d:
        lg1 = _quiet_logger(d)
        lg2 = _quiet_logger(d)
        assert_eq(lg1.run_dir, os.path.join(d, "exp", "r0"))
        assert_eq(lg2.run_dir, os.path.join(d, "exp", "r0_1"))

        lg1.dump_config({"lr": 1e-3, "device": th.device("cpu")})
        cfg = json.loads(read_text(os.path.join(lg1.run_dir, "config.json")))
        assert_eq(cfg, {"lr": 1e-3, "device": "cpu"})

        meta = json.loads(read_text(os.path.join(lg1.run_dir, "metadata.json")))
        assert_eq(meta["run_dir"], lg1.run_dir)
        assert_in("torch", meta)
        assert_true(isinstance(meta["git"], dict))

        resumed = _quiet_logger(d, resume=True)
        assert_eq(resumed.run_dir, lg1.run_dir)
        assert_raises(FileNotFoundError, lambda: _quiet_logger(d, run_id="missing", resume=True))


# =============================================================================
# Tests: builder / integration
# =============================================================================
def test_build_logger_backends():
    with TempDir() as d:
        lg = build_logger(log_dir=d, exp_name="e", run_id="r", console_every=0)
        names = [type(w).__name__ for w in lg.writers]
        assert_eq(names, ["CSVWriter", "JSONLWriter"])
        lg.log({"x": 1.0}, step=1)
        lg.close()
        assert_true(os.path.isfile(os.path.join(lg.run_dir, "metrics.csv")))
        assert_true(os.path.isfile(os.path.join(lg.run_dir, "metrics.jsonl")))

        safe = build_logger(log_dir=d, exp_name="e", run_id="s", use_csv=False, safe_writers=True, console_every=0)
        assert_eq([type(w).__name__ for w in safe.writers], ["SafeWriter"])
        safe.close()


def test_agent_update_metrics_reach_writers():
    seed_all(0)
    with TempDir() as d:
        lg = build_logger(log_dir=d, exp_name="dqn", run_id="r", console_every=0)
        agent = dqn(observation_shape=(4,), n_actions=2, hidden_sizes=(8,), logger=lg)
        exps = random_experiences(4)
        for _ in range(2):
            agent.update(0.99, exps, np.ones(4))
        lg.close()

        rows = _read_jsonl(os.path.join(lg.run_dir, "metrics.jsonl"))
        assert_eq([r["step"] for r in rows], [1.0, 2.0])
        for key in ("train/loss/q", "train/q/mean", "train/target/mean", "train/lr"):
            assert_in(key, rows[-1])

        cfg = json.loads(read_text(os.path.join(lg.run_dir, "config.json")))
        assert_eq(cfg["algo"], "dqn")
        assert_eq(cfg["loss_function"], "huber")

        header = _read_csv(os.path.join(lg.run_dir, "metrics.csv"))[0]
        assert_in("train/loss/q", header)


def test_policy_scores_drained_on_update():
    mem = MemoryWriter()
    with TempDir() as d:
        lg = _quiet_logger(d, writers=[mem])
        model = FixedQ([2.0, 3.0])
        agent = DQNAgent(model, th.optim.SGD(model.parameters(), lr=0.1), (1, 4), 2, logger=lg)

        for _ in range(3):
            for _ in range(1000):
                agent.policy(np.zeros(4, dtype=np.float32))
            agent.update(0.99, [make_experience()], [1.0])
        # nothing left buffered after the last update
        assert_true(lg.dump() is None, "policy buffer must be empty after an update")
        lg.close()

    policy_rows = [r for r in mem.rows if "policy/q_max" in r]
    assert_eq([r["step"] for r in policy_rows], [1.0, 2.0, 3.0])
    assert_close(policy_rows[0]["policy/q_max"], 3.0, atol=1e-6)
    assert_close(policy_rows[0]["policy/q_mean"], 2.5, atol=1e-6)
    assert_eq(len(mem.rows), 6)


# =============================================================================
# Runner
# =============================================================================
TESTS: List[Tuple[str, Callable[[], Any]]] = [
    ("jsonl_writer_writes_lines", test_jsonl_writer_writes_lines),
    ("csv_writer_freezes_schema_on_first_row", test_csv_writer_freezes_schema_on_first_row),
    ("csv_writer_resume_keeps_header", test_csv_writer_resume_keeps_header),
    ("safe_writer_counts_failures", test_safe_writer_counts_failures),
    ("tensorboard_writer_availability", test_tensorboard_writer_availability),
    ("log_prefixes_keys_and_adds_meta", test_log_prefixes_keys_and_adds_meta),
    ("drop_non_finite", test_drop_non_finite),
    ("key_throttling", test_key_throttling),
    ("record_and_dump", test_record_and_dump),
    ("step_inference", test_step_inference),
    ("writer_failures_recorded_when_not_strict", test_writer_failures_recorded_when_not_strict),
    ("writer_failures_raise_when_strict", test_writer_failures_raise_when_strict),
    ("periodic_flush_and_context_manager", test_periodic_flush_and_context_manager),
    ("run_dir_and_config_files", test_run_dir_and_config_files),
    ("build_logger_backends", test_build_logger_backends),
    ("agent_update_metrics_reach_writers", test_agent_update_metrics_reach_writers),
    ("policy_scores_drained_on_update", test_policy_scores_drained_on_update),
]


def main(argv=None) -> int:
    return run_tests(TESTS, argv=argv, suite_name="loggers")


if __name__ == "__main__":
    raise SystemExit(main())
