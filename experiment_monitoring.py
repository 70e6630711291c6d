"""
Experiment Monitoring — Rotating experiment event log and batch summaries.

Two monitoring layers:

1. ``ExperimentEventLog`` — JSON-line events (``batch_started``,
   ``experiment_finished``, ``experiment_failed``, ``batch_finished``)
   written to ``<log_dir>/experiments.log`` with size-based rotation.
2. ``batch_summary()`` — Natural language string describing the outcome of
   a batch (e.g. "5/5 experiments, median convergence 0.000 at t=60").

Usage::

    from experiment_monitoring import ExperimentEventLog, batch_summary
    event_log = ExperimentEventLog(config)
    batch = run_batch(spec, 5, event_log=event_log)
    print(batch_summary(batch))
    event_log.close()
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import time
from pathlib import Path
from typing import Any, Dict, Optional

import numpy as np

from assembly_config import AssemblyConfig

logger = logging.getLogger("assemblygraph.monitoring")


# ── Event log (Layer 1) ────────────────────────────────────────────────


class ExperimentEventLog:
    """Rotating file logger for experiment events.

    Writes structured JSON-line events to ``experiments.log`` with automatic
    rotation based on file size.

    Args:
        config: ``AssemblyConfig`` with monitoring parameters.
    """

    def __init__(self, config: AssemblyConfig) -> None:
        self._cfg = config.monitoring
        self._logger = logging.getLogger("assemblygraph.events")
        self._handler: Optional[logging.Handler] = None
        self.path: Optional[Path] = None
        self._setup_handler()

    def _setup_handler(self) -> None:
        """Configure rotating file handler."""
        log_dir = Path(self._cfg.log_dir).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        self.path = log_dir / "experiments.log"

        handler = logging.handlers.RotatingFileHandler(
            str(self.path),
            maxBytes=self._cfg.max_log_size_mb * 1024 * 1024,
            backupCount=self._cfg.backup_count,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        self._logger.addHandler(handler)
        self._logger.setLevel(logging.INFO)
        self._handler = handler

    def log_event(self, event_type: str, data: Dict[str, Any]) -> None:
        """Write a structured event to the experiment log."""
        event = {
            "timestamp": time.time(),
            "event": event_type,
            "data": data,
        }
        self._logger.info(json.dumps(event, default=str))

    def close(self) -> None:
        """Detach and close the file handler."""
        if self._handler is not None:
            self._logger.removeHandler(self._handler)
            self._handler.close()
            self._handler = None

    def __enter__(self) -> "ExperimentEventLog":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


def open_event_log(config: AssemblyConfig) -> Optional[ExperimentEventLog]:
    """Event log if monitoring is enabled in ``config``, else ``None``."""
    if not config.monitoring.enabled:
        return None
    return ExperimentEventLog(config)


# ── Batch summary (Layer 2) ────────────────────────────────────────────


def batch_summary(batch: Any, node: int = 0, window: int = 5, limit: float = 0.05) -> str:
    """Generate a natural language summary of a batch's convergence.

    Args:
        batch: ``BatchResult`` from ``run_batch``.
        node: Region whose activity is summarized.
        window: Convergence window.
        limit: Convergence radius considered settled.

    Returns:
        Human-readable status string.
    """
    total = len(batch.results)
    done = len(batch.succeeded)
    parts = [f"{done}/{total} experiments"]
    if batch.failures:
        parts.append("failed: " + ", ".join(f"#{i}" for i in sorted(batch.failures)))
    if done == 0:
        return ", ".join(parts)

    curve = batch.median(batch.convergence(node=node, window=window))
    parts.append(f"median convergence {curve[-1]:.3f} at t={len(curve)}")

    above = np.flatnonzero(curve >= limit)
    if above.size == 0:
        parts.append(f"below {limit:.0%} throughout")
    elif above[-1] + 1 < len(curve):
        parts.append(f"below {limit:.0%} from t={above[-1] + 2}")
    else:
        parts.append(f"not below {limit:.0%}")
    return ", ".join(parts)
