"""
AssemblyGraph Foundation - Activations, the Region contract and a reference region.

Every component of the framework exchanges sparse boolean vectors
("activations") and consumes memory regions only through the small
``Region`` capability contract defined here:

    step(x, learn=True) -> RegionOutput   advance one timestep (and learn)
    read(x)             -> RegionOutput   pure read, no state change
    reset()                               clear sequential context
    distal_synapse_weights()              [pre, post] recurrent matrix
    clone()                               deep copy, never aliasing state

``MinicolumnRegion`` is a compact numpy region that satisfies the contract:
proximal top-k competition between minicolumns, distal prediction inside
minicolumns and bursting on surprise.  Learning is delegated to pluggable
rule objects so it can be swapped without touching the region.

Design principles:
    - Activations are never mutated once produced (read-only numpy arrays)
    - All randomness is drawn from the region's own seeded generator, so a
      region and every clone of it are deterministic
"""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

import numpy as np

from assembly_config import RegionConfig

Activation = np.ndarray


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class AssemblyGraphError(Exception):
    """Base class for framework errors."""


class NetworkConfigurationError(AssemblyGraphError, ValueError):
    """Malformed adjacency specification or incompatible region widths."""


class RegionContractError(AssemblyGraphError, RuntimeError):
    """A region returned something that violates the capability contract."""


class ExperimentCancelled(AssemblyGraphError):
    """An experiment observed the cancel signal at a step boundary."""


class ExperimentBatchError(AssemblyGraphError):
    """One or more experiments of a batch failed.

    Attributes:
        failures: experiment index → exception raised by that experiment.
    """

    def __init__(self, message: str, failures: Optional[dict] = None):
        super().__init__(message)
        self.failures = dict(failures or {})


# ---------------------------------------------------------------------------
# Activation helpers
# ---------------------------------------------------------------------------

def freeze(x: Iterable) -> Activation:
    """Return a read-only boolean copy of ``x``."""
    a = np.array(x, dtype=bool)
    a.flags.writeable = False
    return a


def as_activation(x: Iterable, size: Optional[int] = None) -> Activation:
    """Coerce ``x`` to a 1-D read-only boolean activation.

    Arrays that are already read-only boolean vectors are returned as-is.

    Raises:
        ValueError: ``x`` is not 1-D or its length differs from ``size``.
    """
    arr = np.asarray(x)
    if arr.ndim != 1:
        raise ValueError(f"Activation must be 1-D, got shape {arr.shape}")
    if size is not None and arr.shape[0] != size:
        raise ValueError(f"Activation width {arr.shape[0]} != expected {size}")
    if arr.dtype == bool and not arr.flags.writeable:
        return arr
    return freeze(arr)


def empty_activation(size: int) -> Activation:
    """All-false activation of the given width."""
    return freeze(np.zeros(size, dtype=bool))


def from_indices(indices: Iterable[int], size: int) -> Activation:
    a = np.zeros(size, dtype=bool)
    a[np.asarray(list(indices), dtype=np.intp)] = True
    a.flags.writeable = False
    return a


def true_indices(x: Activation) -> np.ndarray:
    return np.flatnonzero(x)


def count(x: Activation) -> int:
    """Cardinality: number of active positions."""
    return int(np.count_nonzero(x))


def union(*xs: Activation) -> Activation:
    """Boolean OR of activations of equal width."""
    if not xs:
        raise ValueError("union() needs at least one activation")
    return freeze(np.logical_or.reduce([np.asarray(x, dtype=bool) for x in xs]))


def complement(x: Activation) -> Activation:
    return freeze(~np.asarray(x, dtype=bool))


# ---------------------------------------------------------------------------
# Region contract
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RegionOutput:
    """Response of a region to one input.

    Attributes:
        active: Neurons firing in response to the input.
        predictive: Neurons depolarized by the recurrent (distal) input of
            ``active``; they are favoured to fire on the next step.
    """

    active: Activation
    predictive: Activation


class Region:
    """Capability contract of an external stateful memory region.

    Subclass and override every method except ``clone`` to plug a memory
    substrate into the framework.  ``Network``, the metrics and the
    orchestrator only use what is declared here.
    """

    @property
    def input_size(self) -> int:
        raise NotImplementedError

    @property
    def output_size(self) -> int:
        raise NotImplementedError

    def step(self, x: Activation, learn: bool = True) -> RegionOutput:
        """Advance one timestep with input ``x``.

        With ``learn=False`` synapses are left untouched, but the sequential
        (predictive) context still advances.
        """
        raise NotImplementedError

    def read(self, x: Activation) -> RegionOutput:
        """Response to ``x`` under the current context; changes no state."""
        raise NotImplementedError

    def reset(self) -> None:
        """Clear transient sequential context, keeping learned synapses."""
        raise NotImplementedError

    def distal_synapse_weights(self) -> np.ndarray:
        """Square ``[pre, post]`` matrix of recurrent synapse weights."""
        raise NotImplementedError

    def clone(self) -> "Region":
        """Independent copy; the clone never aliases mutable state."""
        return copy.deepcopy(self)

    def __call__(self, x: Activation) -> RegionOutput:
        return self.read(x)


def checked_activation(region: Region, x, label: str = "Region") -> Activation:
    """Validate one output vector of ``region`` against its declared width.

    Raises:
        RegionContractError: ``x`` is not a ``bool[region.output_size]`` array.
    """
    if not isinstance(x, np.ndarray) or x.dtype != bool or x.shape != (region.output_size,):
        raise RegionContractError(
            f"{label} ({region!r}) returned {getattr(x, 'dtype', type(x))} "
            f"of shape {np.shape(x)}, expected bool[{region.output_size}]"
        )
    return as_activation(x)


def checked_output(region: Region, output: RegionOutput, label: str = "Region") -> RegionOutput:
    """``output`` with both vectors validated by ``checked_activation``."""
    return RegionOutput(
        checked_activation(region, output.active, label),
        checked_activation(region, output.predictive, label),
    )


# ---------------------------------------------------------------------------
# Plasticity Rules (pluggable strategy objects)
# ---------------------------------------------------------------------------

@dataclass
class LearningTrace:
    """Everything a plasticity rule may need about one region step.

    Attributes:
        input: Proximal input of this step.
        active_columns: Minicolumns that won the proximal competition.
        active: Cells that fired this step.
        winners: Learning cells (predicted-active cells, plus one chosen
            cell per bursting column).
        prev_active: Cells that fired on the previous step.
        prev_winners: Learning cells of the previous step.
        prev_predictive: Cells predicted for this step.
    """

    input: Activation
    active_columns: np.ndarray
    active: np.ndarray
    winners: np.ndarray
    prev_active: np.ndarray
    prev_winners: np.ndarray
    prev_predictive: np.ndarray


class PlasticityRule:
    """Base class for pluggable plasticity rules.

    Subclass and override ``apply`` to create custom rules.
    """

    def apply(self, region: "MinicolumnRegion", trace: LearningTrace) -> None:
        raise NotImplementedError


class ProximalHebbianRule(PlasticityRule):
    """Hebbian adaptation of the proximal (feedforward) synapses.

    For every winning column, permanences of potential synapses on active
    input bits increase by ``increment`` and those on inactive bits decrease
    by ``decrement``; permanences stay within [0, 1].  Winners therefore
    strengthen their claim on the same input.
    """

    def __init__(self, increment: float = 0.10, decrement: float = 0.04):
        self.increment = increment
        self.decrement = decrement

    def apply(self, region: "MinicolumnRegion", trace: LearningTrace) -> None:
        cols = np.flatnonzero(trace.active_columns)
        if cols.size == 0:
            return
        delta = np.where(trace.input, self.increment, -self.decrement).astype(np.float32)
        perm = region._proximal[cols] + delta
        np.clip(perm, 0.0, 1.0, out=perm)
        # Synapses outside the potential pool never exist
        perm *= region._potential[cols]
        region._proximal[cols] = perm


class DistalHebbianRule(PlasticityRule):
    """Hebbian adaptation and growth of the distal (recurrent) synapses.

    Rules:
        Reinforce: for each winner cell, existing synapses from cells active
            on the previous step gain ``increment``; the others lose
            ``decrement``.
        Grow: a winner with fewer than ``sample_size`` synapses from the
            previous active cells grows new ones (permanence ``initial``)
            from the previous winners, never from itself.
        Punish: cells predicted for this step that did not fire lose
            ``punish`` on synapses from the previous active cells.

    A permanence of 0 means no synapse.
    """

    def __init__(
        self,
        increment: float = 0.058,
        decrement: float = 0.015,
        punish: float = 0.0001,
        initial: float = 0.55,
        sample_size: int = 24,
    ):
        self.increment = increment
        self.decrement = decrement
        self.punish = punish
        self.initial = initial
        self.sample_size = sample_size

    def apply(self, region: "MinicolumnRegion", trace: LearningTrace) -> None:
        prev = trace.prev_active
        if not prev.any():
            return
        distal = region._distal

        winners = np.flatnonzero(trace.winners)
        if winners.size:
            block = distal[:, winners]
            existing = block > 0
            prev_col = prev[:, np.newaxis]
            block[existing & prev_col] += self.increment
            block[existing & ~prev_col] -= self.decrement
            np.clip(block, 0.0, 1.0, out=block)

            candidates = np.flatnonzero(trace.prev_winners)
            for j, post in enumerate(winners):
                missing = self.sample_size - int(np.count_nonzero((block[:, j] > 0) & prev))
                if missing <= 0 or candidates.size == 0:
                    continue
                pool = candidates[(block[candidates, j] == 0) & (candidates != post)]
                if pool.size == 0:
                    continue
                if pool.size > missing:
                    pool = region._rng.choice(pool, size=missing, replace=False)
                block[pool, j] = self.initial
            distal[:, winners] = block

        wrong = np.flatnonzero(trace.prev_predictive & ~trace.active)
        if self.punish > 0 and wrong.size:
            block = distal[:, wrong]
            block[(block > 0) & prev[:, np.newaxis]] -= self.punish
            np.clip(block, 0.0, 1.0, out=block)
            distal[:, wrong] = block


# ---------------------------------------------------------------------------
# Reference region
# ---------------------------------------------------------------------------

class MinicolumnRegion(Region):
    """Reference region: minicolumn competition with distal prediction.

    Pipeline of one step:
        1. Column overlap = connected proximal synapses on active input bits
        2. Columns with overlap >= stimulus_threshold compete; the top
           ``active_columns`` win (fixed per-column tie-break)
        3. In each winning column the predicted cells fire; a column with no
           predicted cell bursts (all its cells fire)
        4. Plasticity rules adapt proximal and distal synapses (if learning)
        5. Cells whose connected distal input from the active cells reaches
           activate_threshold become predictive for the next step

    Args:
        config: Region parameters (defaults to ``RegionConfig()``).
        rules: Plasticity rules; defaults to proximal + distal Hebbian rules
            built from ``config``.
    """

    def __init__(
        self,
        config: Optional[RegionConfig] = None,
        rules: Optional[Sequence[PlasticityRule]] = None,
    ):
        self.config = config or RegionConfig()
        cfg = self.config
        if cfg.activate_threshold < 1:
            raise ValueError("activate_threshold must be >= 1")

        self._rng = np.random.default_rng(cfg.seed)
        n_cols, n_in, n = cfg.n_columns, cfg.input_size, cfg.n_neurons

        # --- Proximal synapses: [column, input] ---
        self._potential = self._rng.random((n_cols, n_in)) < cfg.proximal_potential
        perm = cfg.proximal_connected + self._rng.uniform(-0.1, 0.1, size=(n_cols, n_in))
        self._proximal = np.where(self._potential, perm, 0.0).astype(np.float32)

        # --- Fixed tie-breaks (< 1, so integer overlaps always dominate) ---
        self._column_tiebreak = self._rng.random(n_cols) * 0.5
        self._cell_tiebreak = self._rng.random(n) * 0.5

        # --- Distal synapses: [pre, post] permanences ---
        self._distal = np.zeros((n, n), dtype=np.float32)

        # --- Sequential context ---
        self._active = np.zeros(n, dtype=bool)
        self._winners = np.zeros(n, dtype=bool)
        self._predictive = np.zeros(n, dtype=bool)

        self._rules: List[PlasticityRule] = list(rules) if rules is not None else [
            ProximalHebbianRule(cfg.proximal_increment, cfg.proximal_decrement),
            DistalHebbianRule(
                increment=cfg.distal_increment,
                decrement=cfg.distal_decrement,
                punish=cfg.distal_punish,
                initial=cfg.distal_initial,
                sample_size=cfg.synapse_sample_size,
            ),
        ]
        self.timestep: int = 0

    def __repr__(self) -> str:
        cfg = self.config
        return (f"MinicolumnRegion(input_size={cfg.input_size}, "
                f"columns={cfg.n_columns}x{cfg.cells_per_column}, t={self.timestep})")

    @property
    def input_size(self) -> int:
        return self.config.input_size

    @property
    def output_size(self) -> int:
        return self.config.n_neurons

    @property
    def column_width(self) -> int:
        return self.config.cells_per_column

    def set_plasticity_rules(self, rules: Sequence[PlasticityRule]) -> None:
        self._rules = list(rules)

    # -----------------------------------------------------------------------
    # Contract
    # -----------------------------------------------------------------------

    def step(self, x: Activation, learn: bool = True) -> RegionOutput:
        x = as_activation(x, self.input_size)
        cols = self.activate_columns(x)
        active, bursting = self._activate_cells(cols, self._predictive)
        winners = self._select_winners(active, bursting)

        if learn:
            trace = LearningTrace(
                input=x,
                active_columns=cols,
                active=active,
                winners=winners,
                prev_active=self._active,
                prev_winners=self._winners,
                prev_predictive=self._predictive,
            )
            for rule in self._rules:
                rule.apply(self, trace)

        self._active = active
        self._winners = winners
        self._predictive = self._predict(active)
        self.timestep += 1
        return RegionOutput(freeze(active), freeze(self._predictive))

    def read(self, x: Activation) -> RegionOutput:
        x = as_activation(x, self.input_size)
        active, _ = self._activate_cells(self.activate_columns(x), self._predictive)
        return RegionOutput(freeze(active), freeze(self._predict(active)))

    def reset(self) -> None:
        n = self.config.n_neurons
        self._active = np.zeros(n, dtype=bool)
        self._winners = np.zeros(n, dtype=bool)
        self._predictive = np.zeros(n, dtype=bool)

    def distal_synapse_weights(self) -> np.ndarray:
        return (self._distal >= self.config.distal_connected).astype(np.float32)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def activate_columns(self, x: Activation) -> np.ndarray:
        """Minicolumns that win the proximal competition for input ``x``."""
        cfg = self.config
        connected = self._proximal >= cfg.proximal_connected
        overlap = np.count_nonzero(connected & x[np.newaxis, :], axis=1)
        eligible = overlap >= cfg.stimulus_threshold
        cols = np.zeros(cfg.n_columns, dtype=bool)
        n_eligible = int(np.count_nonzero(eligible))
        if n_eligible == 0:
            return cols
        k = min(cfg.active_columns, n_eligible)
        score = np.where(eligible, overlap + self._column_tiebreak, -np.inf)
        cols[np.argpartition(-score, k - 1)[:k]] = True
        return cols

    def _activate_cells(self, cols: np.ndarray, predictive: np.ndarray):
        width = self.config.cells_per_column
        predicted = predictive.reshape(-1, width) & cols[:, np.newaxis]
        bursting = cols & ~predicted.any(axis=1)
        active = predicted | bursting[:, np.newaxis]
        return active.reshape(-1), bursting

    def _select_winners(self, active: np.ndarray, bursting: np.ndarray) -> np.ndarray:
        cfg = self.config
        winners = active & self._predictive
        if not bursting.any():
            return winners
        if self._active.any():
            matching = np.count_nonzero(self._distal[self._active] > 0, axis=0)
            matching = np.where(matching >= cfg.learn_threshold, matching, 0)
        else:
            matching = np.zeros(cfg.n_neurons, dtype=np.int64)
        score = (matching + self._cell_tiebreak).reshape(-1, cfg.cells_per_column)
        best = np.argmax(score, axis=1)
        burst_cols = np.flatnonzero(bursting)
        winners[burst_cols * cfg.cells_per_column + best[burst_cols]] = True
        return winners

    def _predict(self, active: np.ndarray) -> np.ndarray:
        if not active.any():
            return np.zeros(self.config.n_neurons, dtype=bool)
        connected = self._distal[active] >= self.config.distal_connected
        depolarization = np.count_nonzero(connected, axis=0)
        return depolarization >= self.config.activate_threshold
