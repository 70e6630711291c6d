"""
AssemblyGraph Configuration — Centralized configuration for regions and experiments.

Provides an ``AssemblyConfig`` dataclass that holds the tuneable parameters of
the reference minicolumn region, the experiment orchestrator and the
experiment event log.  Configuration can be loaded from a dict of overrides,
a JSON file, or left at sensible defaults.

Usage::

    from assembly_config import AssemblyConfig, load_config

    # Defaults
    cfg = load_config()

    # With overrides
    cfg = load_config({"region": {"n_columns": 400, "cells_per_column": 10}})

    # From JSON file
    cfg = load_config(config_path="~/.assemblygraph/config.json")

The "merge" region (a region whose input is another region's output) is
derived with ``RegionConfig.with_input_size``::

    input_params = cfg.region
    merge_params = input_params.with_input_size(input_params.n_neurons)
"""

from __future__ import annotations

import json
import logging
import math
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger("assemblygraph.config")

_SECTIONS = ("region", "experiment", "monitoring")
_DEFAULT_HOME = "~/.assemblygraph"


def get_assemblygraph_home() -> Path:
    """Return the data directory used for logs.

    Resolution order (first match wins):
        1. ``ASSEMBLYGRAPH_HOME`` environment variable
        2. Default: ``~/.assemblygraph``
    """
    env_home = os.environ.get("ASSEMBLYGRAPH_HOME")
    if env_home:
        return Path(env_home).expanduser().resolve()
    return Path(_DEFAULT_HOME).expanduser().resolve()


def _default_log_dir() -> str:
    return str(get_assemblygraph_home() / "logs")


# ── Section dataclasses ────────────────────────────────────────────────


@dataclass
class RegionConfig:
    """Parameters of the reference ``MinicolumnRegion``.

    Neurons are grouped in ``n_columns`` minicolumns of ``cells_per_column``
    cells.  Cell ``c * cells_per_column + i`` is cell ``i`` of column ``c``.

    Attributes:
        input_size: Width of the feedforward (proximal) input.
        n_columns: Number of minicolumns.
        cells_per_column: Neurons per minicolumn (the minicolumn width).
        sparsity: Fraction of columns that win the proximal competition.
            ``None`` means ``1 / sqrt(n_columns)``.
        proximal_potential: Probability that an input bit is in a column's
            potential pool.
        proximal_connected: Permanence at which a proximal synapse conducts.
        proximal_increment / proximal_decrement: Hebbian proximal learning rates.
        distal_connected: Permanence at which a distal synapse conducts.
        distal_initial: Permanence of newly grown distal synapses.
        distal_increment / distal_decrement: Hebbian distal learning rates.
        distal_punish: Depression of synapses onto wrongly predicted cells.
        stimulus_threshold: Minimum column overlap to enter the competition.
        learn_threshold: Minimum matching distal synapses for a bursting
            cell to be preferred as the learning winner.
        activate_threshold: Connected active distal synapses needed for a
            cell to become predictive.
        synapse_sample_size: Target number of active distal synapses that a
            learning cell grows towards.
        seed: Seed for every random draw made at construction.
    """

    input_size: int = 1000
    n_columns: int = 256
    cells_per_column: int = 8
    sparsity: Optional[float] = None
    proximal_potential: float = 0.5
    proximal_connected: float = 0.5
    proximal_increment: float = 0.10
    proximal_decrement: float = 0.04
    distal_connected: float = 0.5
    distal_initial: float = 0.55
    distal_increment: float = 0.058
    distal_decrement: float = 0.015
    distal_punish: float = 0.0001
    stimulus_threshold: int = 1
    learn_threshold: int = 6
    activate_threshold: int = 10
    synapse_sample_size: int = 24
    seed: int = 0

    @property
    def n_neurons(self) -> int:
        return self.n_columns * self.cells_per_column

    @property
    def column_sparsity(self) -> float:
        if self.sparsity is not None:
            return self.sparsity
        return 1.0 / math.sqrt(self.n_columns)

    @property
    def active_columns(self) -> int:
        """Number of columns that win the proximal competition."""
        return max(1, int(round(self.column_sparsity * self.n_columns)))

    def with_input_size(self, input_size: int) -> "RegionConfig":
        """Copy of this config fed by an input of another width."""
        return replace(self, input_size=input_size)

    def with_seed(self, seed: int) -> "RegionConfig":
        return replace(self, seed=seed)


@dataclass
class ExperimentConfig:
    """Defaults for the experiment orchestrator."""

    horizon: int = 60
    experiment_count: int = 5
    projection_horizon: int = 30
    convergence_window: int = 5
    convergence_limit: float = 0.05
    max_workers: Optional[int] = None
    base_seed: int = 0


@dataclass
class MonitoringConfig:
    """Configuration for the experiment event log."""

    log_dir: str = field(default_factory=_default_log_dir)
    max_log_size_mb: int = 10
    backup_count: int = 5
    enabled: bool = False


# ── Top-level config ───────────────────────────────────────────────────


@dataclass
class AssemblyConfig:
    """Top-level AssemblyGraph configuration.

    Groups all tunables into three sections.  Use ``load_config()``
    to create an instance with user overrides applied.
    """

    region: RegionConfig = field(default_factory=RegionConfig)
    experiment: ExperimentConfig = field(default_factory=ExperimentConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)


# ── Factory ────────────────────────────────────────────────────────────


def _apply_overrides(obj: Any, overrides: Dict[str, Any]) -> None:
    """Apply a dict of overrides to a dataclass instance (in-place)."""
    for key, value in overrides.items():
        if hasattr(obj, key):
            setattr(obj, key, value)
        else:
            logger.warning("Ignoring unknown %s option %r", type(obj).__name__, key)


def load_config(
    overrides: Optional[Dict[str, Any]] = None,
    config_path: Optional[str] = None,
) -> AssemblyConfig:
    """Create an ``AssemblyConfig`` with defaults, optionally overridden.

    Override precedence (highest wins):
        1. ``overrides`` dict argument
        2. ``config_path`` JSON file
        3. Built-in defaults

    Args:
        overrides: Dict keyed by section name (``region``, ``experiment``,
            ``monitoring``) whose values are dicts of field→value pairs.
        config_path: Path to a JSON file with the same structure as
            ``overrides``.

    Returns:
        Fully populated ``AssemblyConfig``.
    """
    cfg = AssemblyConfig()

    # Layer 1: JSON file
    if config_path is not None:
        p = Path(config_path).expanduser()
        if p.exists():
            try:
                with open(p) as f:
                    file_data = json.load(f)
            except (OSError, json.JSONDecodeError) as exc:
                logger.warning("Failed to load config from %s: %s", p, exc)
            else:
                for section in _SECTIONS:
                    if section in file_data:
                        _apply_overrides(getattr(cfg, section), file_data[section])

    # Layer 2: dict overrides (win over file)
    if overrides is not None:
        for section in _SECTIONS:
            if section in overrides:
                _apply_overrides(getattr(cfg, section), overrides[section])

    return cfg
