from __future__ import annotations

import shutil
import tempfile
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

import numpy as np
import torch as th
import torch.nn as nn

from value_agents.common.experience import Experience
from value_agents.common.loggers.base_writer import Writer


# =============================================================================
# Stub estimators (observation-independent, exactly controllable values)
# =============================================================================
class FixedQ(nn.Module):
    """
    Scalar estimator whose Q-values are a learnable vector ``q`` of shape (A,),
    identical for every observation.
    """

    def __init__(self, values: Sequence[float]) -> None:
        super().__init__()
        self.q = nn.Parameter(th.tensor(list(values), dtype=th.float32))

    def predict(self, observation: th.Tensor) -> th.Tensor:
        B = int(observation.shape[0])
        return self.q.view(1, -1).expand(B, -1) + 0.0 * observation.reshape(B, -1).sum(dim=1, keepdim=True)

    def set(self, values: Sequence[float]) -> None:
        with th.no_grad():
            self.q.copy_(th.tensor(list(values), dtype=th.float32))


class FixedQuantiles(nn.Module):
    """
    Quantile estimator whose distribution is a learnable (A, N) table ``z``.
    """

    def __init__(self, table: Sequence[Sequence[float]]) -> None:
        super().__init__()
        self.z = nn.Parameter(th.tensor([list(r) for r in table], dtype=th.float32))

    def get_distribution(self, observation: th.Tensor) -> th.Tensor:
        B = int(observation.shape[0])
        zero = 0.0 * observation.reshape(B, -1).sum(dim=1).view(B, 1, 1)
        return self.z.unsqueeze(0).expand(B, -1, -1) + zero

    def predict(self, observation: th.Tensor) -> th.Tensor:
        return self.get_distribution(observation).mean(dim=-1)

    def set(self, table: Sequence[Sequence[float]]) -> None:
        with th.no_grad():
            self.z.copy_(th.tensor([list(r) for r in table], dtype=th.float32))


class PredictOnly(nn.Module):
    """Scalar estimator without ``get_distribution``."""

    def __init__(self, obs_dim: int = 4, n_actions: int = 2) -> None:
        super().__init__()
        self.fc = nn.Linear(obs_dim, n_actions)

    def predict(self, observation: th.Tensor) -> th.Tensor:
        return self.fc(observation.reshape(observation.shape[0], -1))


# =============================================================================
# Experiences
# =============================================================================
def make_experience(
    *,
    action: int = 0,
    reward: float = 1.0,
    done: bool = False,
    obs_dim: int = 4,
    fill: float = 0.0,
) -> Experience:
    return Experience(
        observation=np.full((obs_dim,), fill, dtype=np.float32),
        action=action,
        reward=reward,
        done=done,
        next_observation=np.full((obs_dim,), fill + 1.0, dtype=np.float32),
    )


def random_experiences(n: int, *, obs_dim: int = 4, n_actions: int = 2, seed: int = 0) -> List[Experience]:
    rng = np.random.RandomState(seed)
    return [
        Experience(
            observation=rng.randn(obs_dim).astype(np.float32),
            action=int(rng.randint(0, n_actions)),
            reward=float(rng.randn()),
            done=bool(rng.rand() < 0.2),
            next_observation=rng.randn(obs_dim).astype(np.float32),
        )
        for _ in range(int(n))
    ]


# =============================================================================
# Logger fakes
# =============================================================================
@dataclass
class LoggedRecord:
    step: Optional[int]
    prefix: str
    metrics: Dict[str, Any]


class FakeLogger:
    """Captures ``log`` / ``record`` payloads and ``dump`` steps for assertions."""

    def __init__(self) -> None:
        self.records: List[LoggedRecord] = []
        self.recorded: List[LoggedRecord] = []
        self.dumps: List[Optional[int]] = []

    def log(self, metrics: Mapping[str, Any], step: Optional[int] = None, *, prefix: str = "") -> None:
        self.records.append(LoggedRecord(step=step, prefix=str(prefix), metrics=dict(metrics)))

    def record(self, metrics: Mapping[str, Any], *, prefix: str = "") -> None:
        self.recorded.append(LoggedRecord(step=None, prefix=str(prefix), metrics=dict(metrics)))

    def dump(self, step: Optional[int] = None, *, prefix: str = "", **_: Any) -> None:
        self.dumps.append(step)


class MemoryWriter(Writer):
    """Keeps every written row in memory."""

    def __init__(self) -> None:
        self.rows: List[Dict[str, float]] = []
        self.flushes = 0
        self.closed = False

    def write(self, row: Mapping[str, float]) -> None:
        self.rows.append(dict(row))

    def flush(self) -> None:
        self.flushes += 1

    def close(self) -> None:
        self.closed = True


class FailingWriter(Writer):
    """Raises on every operation."""

    def write(self, row: Mapping[str, float]) -> None:
        raise IOError("disk full")

    def flush(self) -> None:
        raise IOError("flush failed")

    def close(self) -> None:
        raise IOError("close failed")


# =============================================================================
# Filesystem
# =============================================================================
class TempDir:
    """Context manager yielding a fresh temporary directory path."""

    def __init__(self, prefix: str = "vatests_") -> None:
        self.prefix = prefix
        self.path = ""

    def __enter__(self) -> str:
        self.path = tempfile.mkdtemp(prefix=self.prefix)
        return self.path

    def __exit__(self, exc_type, exc, tb) -> None:
        shutil.rmtree(self.path, ignore_errors=True)
