"""Logging for ingest runs: one stream handler, ``run_id``/``stage`` on every line."""

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s run_id=%(run_id)s stage=%(stage)s %(name)s %(message)s"
CONTEXT_DEFAULTS = {"run_id": "-", "stage": "-"}

_NOISY_LOGGERS = ("httpx", "httpcore", "hpack")


def configure_logging(level_name: str | None = None) -> int:
    """Point the root logger at stderr with the run-context format; returns the level used."""
    name = (level_name or os.getenv("LOG_LEVEL") or "INFO").upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    root.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, defaults=CONTEXT_DEFAULTS)
    for handler in root.handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    for noisy in _NOISY_LOGGERS:
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))
    return level


def stage_extra(run_id: str, stage: str) -> dict[str, str]:
    """``extra`` mapping that fills the run_id/stage format fields."""
    return {"run_id": run_id, "stage": stage}
