"""
Loggers
====================

This package provides:
- Logger frontend (step inference, buffering, throttling, console printing)
- Writer backends (CSV, JSONL, TensorBoard) and the SafeWriter wrapper
- ``build_logger`` to construct a Logger with selected backends

Typical usage
-------------
from value_agents.common.loggers import build_logger

logger = build_logger(log_dir="./runs", exp_name="cartpole_dqn")
agent = dqn(observation_shape=(4,), n_actions=2, logger=logger)
...
logger.close()
"""

from __future__ import annotations

from .base_writer import SafeWriter, Writer
from .csv_writer import CSVWriter
from .jsonl_writer import JSONLWriter
from .logger import Logger
from .logger_builder import build_logger
from .tensorboard_writer import TensorBoardWriter

__all__ = [
    # core
    "Logger",
    # writer base
    "Writer",
    "SafeWriter",
    # writers
    "CSVWriter",
    "JSONLWriter",
    "TensorBoardWriter",
    # builder
    "build_logger",
]
