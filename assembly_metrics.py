"""
Assembly Metrics — Pure functions over activations.

Overlap, relative distance and convergence measure how an activation time
series settles; the interconnection measures score how assembly-like a set
of neurons is given a region's recurrent synapses; the minicolumn helpers
view an activation at the granularity of minicolumns.

Every function is total.  Where a denominator can be zero (empty
activation, no synapses, no active column) a documented sentinel is
returned instead of raising.  Activations of different widths are a
programming error and raise ``ValueError``.

Usage::

    from assembly_metrics import convergence, relative_distance

    ys = [region.step(x).active for _ in range(60)]
    deltas = convergence(ys, window=5)
"""

from __future__ import annotations

import math
from typing import List, Sequence

import numpy as np

from assembly_foundation import Activation, Region, count, freeze


def _check_widths(x: Activation, y: Activation) -> None:
    if np.shape(x) != np.shape(y):
        raise ValueError(f"Activation shapes differ: {np.shape(x)} vs {np.shape(y)}")


# ── Set similarity ─────────────────────────────────────────────────────


def overlap(x: Activation, y: Activation) -> int:
    """Number of neurons active in both ``x`` and ``y``."""
    _check_widths(x, y)
    return int(np.count_nonzero(np.logical_and(x, y)))


def relative_distance(x: Activation, y: Activation) -> float:
    """Relative distance between two sparse binary vectors, bounded in [0, 1].

    ``1 - overlap(x, y) * mean(1/|x|, 1/|y|)``, i.e. one minus the overlap
    normalized by the harmonic mean of the cardinalities.  0 when ``x == y``
    (non-empty), 1 when they are disjoint.

    Sentinel: 1.0 when either activation is empty.
    """
    _check_widths(x, y)
    nx, ny = count(x), count(y)
    if nx == 0 or ny == 0:
        return 1.0
    shared = int(np.count_nonzero(np.logical_and(x, y)))
    # Integer numerator and denominator: identical inputs give exactly 0
    return 1.0 - (shared * (nx + ny)) / (2 * nx * ny)


# ── Time series ────────────────────────────────────────────────────────


def moving_union(series: Sequence[Activation], window: int) -> List[Activation]:
    """Neurons active at any time in the trailing window.

    Element ``t`` is the OR of ``series[max(0, t - window) .. t]``.
    """
    if window < 0:
        raise ValueError("window must be >= 0")
    out: List[Activation] = []
    for t in range(len(series)):
        start = max(0, t - window)
        out.append(freeze(np.logical_or.reduce(
            [np.asarray(s, dtype=bool) for s in series[start:t + 1]]
        )))
    return out


def stepwise_delta(series: Sequence[Activation]) -> np.ndarray:
    """Relative distance between successive elements; the first is 0."""
    deltas = np.zeros(len(series), dtype=float)
    for t in range(1, len(series)):
        deltas[t] = relative_distance(series[t - 1], series[t])
    return deltas


def convergence(series: Sequence[Activation], window: int = 5) -> np.ndarray:
    """Primary convergence diagnostic.

    Near-zero values mean no new neurons are being recruited into the
    active set over the trailing ``window`` steps.
    """
    return stepwise_delta(moving_union(series, window))


def normalize_series(values: np.ndarray) -> np.ndarray:
    """Min-max normalize along axis 0 (constant series map to 0)."""
    v = np.asarray(values, dtype=float)
    lo = v.min(axis=0)
    span = v.max(axis=0) - lo
    span = np.where(span == 0, 1.0, span)
    return (v - lo) / span


# ── Interconnection ────────────────────────────────────────────────────


def interconnection_measure(x: Activation, region: Region) -> float:
    """Weighted count of distal synapses with both endpoints in ``x``: xᵀ·D·x."""
    weights = region.distal_synapse_weights()
    xf = np.asarray(x, dtype=weights.dtype)
    return float(xf @ weights @ xf)


def interconnection_density(x: Activation, region: Region) -> float:
    """Ratio of synapses inside ``x`` to synapses entering ``x`` from outside.

    ``xᵀDx / (¬x)ᵀDx``; an assembly-ness score.

    Sentinel: when no synapse enters ``x`` from outside, ``math.inf`` if
    there are synapses inside ``x``, else 0.0.
    """
    weights = region.distal_synapse_weights()
    xb = np.asarray(x, dtype=bool)
    inside = xb.astype(weights.dtype)
    outside = (~xb).astype(weights.dtype)
    within = float(inside @ weights @ inside)
    entering = float(outside @ weights @ inside)
    if entering == 0.0:
        return math.inf if within > 0.0 else 0.0
    return within / entering


# ── Minicolumns ────────────────────────────────────────────────────────


def active_minicolumns(x: Activation, column_width: int) -> np.ndarray:
    """Column-level view: a column is active if any of its neurons is."""
    xb = np.asarray(x, dtype=bool)
    if column_width < 1 or xb.shape[0] % column_width:
        raise ValueError(
            f"Width {xb.shape[0]} is not a multiple of column width {column_width}"
        )
    return xb.reshape(-1, column_width).any(axis=1)


def minicolumn_overlap(x: Activation, y: Activation, column_width: int) -> int:
    """Number of minicolumns active in both ``x`` and ``y``."""
    _check_widths(x, y)
    return overlap(active_minicolumns(x, column_width), active_minicolumns(y, column_width))


def minicolumn_overlap_fraction(x: Activation, y: Activation, column_width: int) -> float:
    """Shared minicolumns as a fraction of all minicolumns."""
    shared = minicolumn_overlap(x, y, column_width)
    return shared / (np.shape(x)[0] // column_width)


def bursting_fraction(x: Activation, column_width: int) -> float:
    """Fraction of active minicolumns where every neuron fires (surprise).

    Sentinel: 0.0 when no column is active.
    """
    cols = np.asarray(x, dtype=bool).reshape(-1, column_width)
    active = cols.any(axis=1)
    n_active = int(np.count_nonzero(active))
    if n_active == 0:
        return 0.0
    return int(np.count_nonzero(cols.all(axis=1))) / n_active


def activity_per_active_minicolumn(x: Activation, column_width: int) -> float:
    """Mean number of firing neurons per active minicolumn.

    Sentinel: 0.0 when no column is active.
    """
    per_column = np.count_nonzero(np.asarray(x, dtype=bool).reshape(-1, column_width), axis=1)
    per_column = per_column[per_column > 0]
    if per_column.size == 0:
        return 0.0
    return float(per_column.mean())
