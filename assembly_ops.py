"""
Assembly Operations — Projection, probing and stimulus generators.

Higher-level operations of the assembly calculus expressed through the
``Region`` contract:

    project(region, x)          stimulate until the response has settled
    probe(region, x)            response under predictive context, no learning
    subset(x, p)                random partial cue of an activation
    sparse_random(n, density)   random sparse stimulus

plus two measurement protocols built on them: ``association_trace`` (do two
co-firing assemblies move towards each other?) and ``completion_recall``
(how much of an assembly does a partial cue predict?).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from assembly_foundation import (
    Activation,
    Region,
    RegionOutput,
    count,
    empty_activation,
    freeze,
    from_indices,
    true_indices,
    union,
)
from assembly_metrics import overlap

logger = logging.getLogger("assemblygraph.ops")

DEFAULT_PROJECTION_HORIZON = 30


def _rng(rng: Optional[np.random.Generator]) -> np.random.Generator:
    return rng if rng is not None else np.random.default_rng()


# ── Core operations ────────────────────────────────────────────────────


def project(region: Region, stimulus: Activation, horizon: int = DEFAULT_PROJECTION_HORIZON) -> Activation:
    """Create a projection of ``stimulus`` on ``region``.

    Calls ``region.step(stimulus)`` exactly ``horizon`` times (the region
    learns) and returns the final active set.  The default horizon is
    enough for the reference region to settle; callers may tune it.

    Raises:
        ValueError: ``horizon`` is not a positive integer.
    """
    if isinstance(horizon, bool) or not isinstance(horizon, (int, np.integer)) or horizon < 1:
        raise ValueError(f"horizon must be a positive integer, got {horizon!r}")
    output = None
    for _ in range(int(horizon)):
        output = region.step(stimulus)
    return output.active


def probe(region: Region, stimulus: Activation) -> RegionOutput:
    """Response of ``region`` to ``stimulus`` in the context of the stimulus itself.

    Shows the input twice to a clone of the region: once without learning,
    which sets up the predictive context, then a pure read.  This reflects
    the response to a familiar stimulus more faithfully than a single read.
    ``region`` itself is not modified.
    """
    trial = region.clone()
    trial.step(stimulus, learn=False)
    return trial.read(stimulus)


def subset(activation: Activation, fraction: float, rng: Optional[np.random.Generator] = None) -> Activation:
    """Uniformly random subset of the active positions of ``activation``.

    The result has exactly ``round(fraction * count(activation))`` active
    positions.

    Raises:
        ValueError: ``fraction`` outside [0, 1].
    """
    if not 0.0 <= fraction <= 1.0:
        raise ValueError(f"fraction must be within [0, 1], got {fraction}")
    size = np.shape(activation)[0]
    positions = true_indices(activation)
    keep = int(round(fraction * positions.size))
    if keep == 0:
        return empty_activation(size)
    chosen = _rng(rng).choice(positions, size=keep, replace=False)
    return from_indices(chosen, size)


def sparse_random(length: int, density: float, rng: Optional[np.random.Generator] = None) -> Activation:
    """Random activation where each position fires with probability ``density``."""
    if not 0.0 <= density <= 1.0:
        raise ValueError(f"density must be within [0, 1], got {density}")
    return freeze(_rng(rng).random(length) < density)


# ── Association ────────────────────────────────────────────────────────


@dataclass
class AssociationPoint:
    """Overlaps measured after one co-stimulation step.

    Attributes:
        ref_a: overlap of the joint response with the initial assembly of a.
        ref_b: overlap of the joint response with the initial assembly of b.
        drift_a: overlap of the current response to a with its initial assembly.
        drift_b: overlap of the current response to b with its initial assembly.
        association: overlap of the current responses to a and b.
    """

    ref_a: int
    ref_b: int
    drift_a: int
    drift_b: int
    association: int


def association_trace(
    region: Region,
    a: Activation,
    b: Activation,
    horizon: int = 50,
    projection_horizon: int = DEFAULT_PROJECTION_HORIZON,
) -> List[AssociationPoint]:
    """Stimulate ``region`` with ``a | b`` and track how the assemblies of a, b move.

    First projects ``a`` and ``b`` separately to obtain the initial
    assemblies, then repeatedly steps with ``a | b``; after each step ``a``
    and ``b`` are read separately.  The first point is measured before any
    joint stimulation.  ``region`` is trained in place; pass a clone to keep it
    untouched.

    Returns:
        ``horizon + 1`` AssociationPoints.
    """
    a0 = project(region, a, projection_horizon)
    b0 = project(region, b, projection_horizon)
    joint = union(a, b)

    def measure(ab: Activation) -> AssociationPoint:
        a_t = region.read(a).active
        b_t = region.read(b).active
        return AssociationPoint(
            ref_a=overlap(ab, a0),
            ref_b=overlap(ab, b0),
            drift_a=overlap(a_t, a0),
            drift_b=overlap(b_t, b0),
            association=overlap(a_t, b_t),
        )

    points = [measure(region.read(joint).active)]
    for _ in range(horizon):
        points.append(measure(region.step(joint).active))
    logger.debug(
        "Association after %d steps: %d shared neurons (|a0|=%d, |b0|=%d)",
        horizon, points[-1].association, count(a0), count(b0),
    )
    return points


# ── Pattern completion ─────────────────────────────────────────────────


def completion_recall(
    region: Region,
    stimulus: Activation,
    assembly: Activation,
    fractions: Sequence[float],
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Assembly recall (percent) from partial cues of ``stimulus``.

    For each fraction ``p``, probes the region with ``subset(stimulus, p)``
    and compares the predicted neurons with ``assembly``, relative to the
    prediction made from the full stimulus.  ``region`` is not modified.

    Sentinel: all zeros when the full stimulus predicts no neuron of the
    assembly.
    """
    rng = _rng(rng)
    full = overlap(assembly, probe(region, stimulus).predictive)
    recall = np.zeros(len(fractions), dtype=float)
    if full == 0:
        return recall
    for i, p in enumerate(fractions):
        cue = subset(stimulus, p, rng)
        recall[i] = overlap(assembly, probe(region, cue).predictive) / full * 100.0
    return recall
