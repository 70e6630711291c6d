"""
Experiment Runner — Repeated stimulation of independent simulation copies.

Runs one simulation target (a ``Network`` or a single ``Region``) for a fixed
horizon, repeated over many independent experiments on a thread pool, and
reshapes the per-step records into ``[time][experiment]`` arrays for
aggregation (median per time step, convergence curves, ...).

Every experiment operates on its own clone of the target and draws its
stimulus from its own seeded generator, so experiments share no mutable
state and the aggregated series do not depend on scheduling.  Results are
indexed by experiment id, never by completion order.

Usage::

    from experiment_runner import ExperimentSpec, run_batch
    from assembly_ops import sparse_random

    spec = ExperimentSpec(
        target=region,
        stimulus=lambda rng: sparse_random(1000, 0.03, rng),
        horizon=60,
    )
    batch = run_batch(spec, experiment_count=5, base_seed=0)
    median_curve = batch.median(batch.convergence(window=5))
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from assembly_foundation import (
    Activation,
    ExperimentBatchError,
    ExperimentCancelled,
    Region,
    as_activation,
    checked_output,
)
from assembly_metrics import (
    convergence,
    interconnection_density,
    interconnection_measure,
    relative_distance,
)
from region_network import Network, describe

logger = logging.getLogger("assemblygraph.experiments")

Target = Union[Network, Region]
StimulusPolicy = Union[Activation, Callable[[np.random.Generator], Activation]]
Record = Dict[str, List[Any]]


# ---------------------------------------------------------------------------
# Specification and results
# ---------------------------------------------------------------------------

@dataclass
class ExperimentSpec:
    """Everything needed to run one experiment.

    Attributes:
        target: Network or Region; cloned for every experiment.
        stimulus: Fixed activation, or ``rng -> activation`` resampled per
            experiment.
        horizon: Number of steps to run.
        measure_interconnection: Also record ``interconnected`` and
            ``density`` of every region's output at every step.
        prepare: Optional hook ``(target, stimulus) -> None`` run on the
            clone before the first step (e.g. pre-training a region).
        measures: Extra measurements: name → ``(target, activity) -> list``
            with one value per region.
    """

    target: Target
    stimulus: StimulusPolicy
    horizon: int = 60
    measure_interconnection: bool = False
    prepare: Optional[Callable[[Target, Activation], None]] = None
    measures: Dict[str, Callable[[Target, List[Activation]], List[Any]]] = field(
        default_factory=dict
    )


@dataclass
class ExperimentResult:
    """Records of one experiment.

    Attributes:
        experiment_id: Index of the experiment within its batch.
        seed: Seed of the experiment's stimulus generator.
        stimulus: Stimulus that was presented.
        records: One dict per step: measurement → per-region values.
        final: The experiment's own target after the last step.
        elapsed: Wall-clock seconds spent.
    """

    experiment_id: int
    seed: Optional[int]
    stimulus: Activation
    records: List[Record]
    final: Target
    elapsed: float = 0.0

    def series(self, name: str, node: int = 0) -> List[Any]:
        """Time series of one measurement for one region."""
        return [rec[name][node] for rec in self.records]


def _regions(target: Target) -> Sequence[Region]:
    return target.regions if isinstance(target, Network) else (target,)


def _input_size(target: Target) -> int:
    return target.input_sizes[0] if isinstance(target, Network) else target.input_size


def _advance(target: Target, stimulus: Activation) -> List[Activation]:
    if isinstance(target, Network):
        return list(target.step(stimulus).activity)
    return [checked_output(target, target.step(stimulus)).active]


def _check_cancelled(
    cancel_event: Optional[threading.Event], experiment_id: int, where: str
) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ExperimentCancelled(f"Experiment {experiment_id} cancelled {where}")


# ---------------------------------------------------------------------------
# Single experiment
# ---------------------------------------------------------------------------

def run_experiment(
    spec: ExperimentSpec,
    experiment_id: int = 0,
    seed: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
) -> ExperimentResult:
    """Run one experiment on a private clone of ``spec.target``.

    Steps are strictly sequential.  ``cancel_event`` is checked before the
    target is cloned, after ``spec.prepare`` and at every step boundary.

    Raises:
        ExperimentCancelled: ``cancel_event`` was set.
        ValueError: ``spec.horizon`` is not positive.
        RegionContractError: a region returned an output of the wrong
            width or type.
    """
    if spec.horizon < 1:
        raise ValueError(f"horizon must be positive, got {spec.horizon}")
    _check_cancelled(cancel_event, experiment_id, "before start")
    started = time.monotonic()
    target = spec.target.clone()
    rng = np.random.default_rng(seed)
    raw = spec.stimulus(rng) if callable(spec.stimulus) else spec.stimulus
    stimulus = as_activation(raw, _input_size(target))

    if spec.prepare is not None:
        spec.prepare(target, stimulus)
        _check_cancelled(cancel_event, experiment_id, "after preparation")

    records: List[Record] = []
    for t in range(spec.horizon):
        _check_cancelled(cancel_event, experiment_id, f"at step {t}")
        activity = _advance(target, stimulus)
        record: Record = {"activity": activity}
        if spec.measure_interconnection:
            regions = _regions(target)
            record["interconnected"] = [
                interconnection_measure(x, r) for x, r in zip(activity, regions)
            ]
            record["density"] = [
                interconnection_density(x, r) for x, r in zip(activity, regions)
            ]
        for name, measure in spec.measures.items():
            record[name] = list(measure(target, activity))
        records.append(record)

    elapsed = time.monotonic() - started
    logger.debug("Experiment %d finished %d steps in %.2fs", experiment_id, spec.horizon, elapsed)
    return ExperimentResult(
        experiment_id=experiment_id,
        seed=seed,
        stimulus=stimulus,
        records=records,
        final=target,
        elapsed=elapsed,
    )


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------

def experiment_seeds(base_seed: int, experiment_count: int) -> List[int]:
    """Independent per-experiment seeds derived from ``base_seed``."""
    children = np.random.SeedSequence(base_seed).spawn(experiment_count)
    return [int(child.generate_state(1)[0]) for child in children]


def experiment_median(matrix: np.ndarray) -> np.ndarray:
    """Median across experiments (axis 1) at each time step."""
    return np.median(np.asarray(matrix, dtype=float), axis=1)


def stepwise_matrix(activity: np.ndarray) -> np.ndarray:
    """Relative distance between consecutive steps of each experiment.

    Args:
        activity: ``(T, E, W)`` boolean array.

    Returns:
        ``(T - 1, E)`` float array.
    """
    t_len, n_exp = activity.shape[:2]
    out = np.zeros((max(t_len - 1, 0), n_exp), dtype=float)
    for e in range(n_exp):
        for t in range(t_len - 1):
            out[t, e] = relative_distance(activity[t, e], activity[t + 1, e])
    return out


@dataclass
class BatchResult:
    """Results of a batch of experiments, indexed by experiment id.

    Attributes:
        results: One entry per experiment; ``None`` where it failed.
        failures: experiment id → exception.
        seeds: Seed of every experiment.
    """

    results: List[Optional[ExperimentResult]]
    failures: Dict[int, BaseException] = field(default_factory=dict)
    seeds: List[int] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures

    @property
    def succeeded(self) -> List[ExperimentResult]:
        return [r for r in self.results if r is not None]

    def raise_for_failures(self) -> None:
        if self.failures:
            detail = "; ".join(
                f"#{i}: {type(exc).__name__}: {exc}" for i, exc in sorted(self.failures.items())
            )
            raise ExperimentBatchError(
                f"{len(self.failures)} of {len(self.results)} experiments failed ({detail})",
                self.failures,
            )

    def measurements(self, name: str, node: int = 0) -> np.ndarray:
        """``[time][experiment]`` array of one measurement of one region.

        Activations give a ``(T, E, W)`` boolean array, scalars a ``(T, E)``
        array.  Only successful experiments are included, in id order.

        Raises:
            ExperimentBatchError: no experiment succeeded.
        """
        done = self.succeeded
        if not done:
            raise ExperimentBatchError("No successful experiments to aggregate", self.failures)
        horizon = len(done[0].records)
        return np.asarray([
            [res.records[t][name][node] for res in done] for t in range(horizon)
        ])

    def convergence(self, node: int = 0, window: int = 5) -> np.ndarray:
        """``(T, E)`` convergence curve of each experiment for one region."""
        activity = self.measurements("activity", node)
        return np.column_stack([
            convergence(list(activity[:, e]), window) for e in range(activity.shape[1])
        ])

    def median(self, series: Union[str, np.ndarray], node: int = 0) -> np.ndarray:
        """Median across experiments at each time step.

        Args:
            series: A ``(T, E)`` matrix, or the name of a scalar measurement.
        """
        matrix = self.measurements(series, node) if isinstance(series, str) else series
        return experiment_median(matrix)


def run_batch(
    spec: ExperimentSpec,
    experiment_count: int,
    base_seed: int = 0,
    max_workers: Optional[int] = None,
    cancel_event: Optional[threading.Event] = None,
    event_log: Any = None,
) -> BatchResult:
    """Run ``experiment_count`` independent experiments concurrently.

    Fan-out on a thread pool, join barrier, then results are collected by
    experiment id.  A failing experiment does not affect its siblings; its
    exception is recorded in ``BatchResult.failures``.

    Args:
        spec: Experiment specification shared by all experiments.
        experiment_count: Number of experiments.
        base_seed: Seed from which per-experiment seeds are derived.
        max_workers: Thread pool size (default: executor default).
        cancel_event: Set it to stop running experiments at their next step
            boundary; queued experiments never start.
        event_log: Optional ``ExperimentEventLog`` receiving batch events.

    Returns:
        BatchResult indexed by experiment id.
    """
    if experiment_count < 1:
        raise ValueError(f"experiment_count must be positive, got {experiment_count}")
    seeds = experiment_seeds(base_seed, experiment_count)
    target_info = (describe(spec.target) if isinstance(spec.target, Network)
                   else {"region": repr(spec.target)})
    logger.info("Starting batch of %d experiments, horizon %d", experiment_count, spec.horizon)
    if event_log is not None:
        event_log.log_event("batch_started", {
            "experiments": experiment_count,
            "horizon": spec.horizon,
            "base_seed": base_seed,
            "target": target_info,
        })

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="experiment") as pool:
        futures = [
            pool.submit(run_experiment, spec, i, seeds[i], cancel_event)
            for i in range(experiment_count)
        ]
        wait(futures)

    batch = BatchResult(results=[None] * experiment_count, seeds=seeds)
    for i, future in enumerate(futures):
        exc = future.exception()
        if exc is not None:
            batch.failures[i] = exc
            logger.warning("Experiment %d failed: %s: %s", i, type(exc).__name__, exc)
            if event_log is not None:
                event_log.log_event("experiment_failed", {
                    "experiment": i, "error": f"{type(exc).__name__}: {exc}",
                })
            continue
        result = future.result()
        batch.results[i] = result
        if event_log is not None:
            event_log.log_event("experiment_finished", {
                "experiment": i, "seed": result.seed, "elapsed": result.elapsed,
            })

    logger.info("Batch finished: %d succeeded, %d failed",
                len(batch.succeeded), len(batch.failures))
    if event_log is not None:
        event_log.log_event("batch_finished", {
            "succeeded": len(batch.succeeded), "failed": sorted(batch.failures),
        })
    return batch
