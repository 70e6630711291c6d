"""Projection demo for AssemblyGraph.

Repeatedly presents one random stimulus to the reference region in several
independent experiments and prints how quickly the active set settles.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np

from assembly_config import load_config
from assembly_foundation import MinicolumnRegion, count
from assembly_ops import probe, project, sparse_random, subset
from experiment_monitoring import batch_summary
from experiment_runner import ExperimentSpec, run_batch


def main():
    cfg = load_config()
    region = MinicolumnRegion(cfg.region)
    density = 1 / np.sqrt(20000 / 15)

    print("=== Region ===")
    print(region)
    print(f"{cfg.region.active_columns} active columns per step")

    spec = ExperimentSpec(
        target=region,
        stimulus=lambda rng: sparse_random(cfg.region.input_size, density, rng),
        horizon=cfg.experiment.horizon,
        measure_interconnection=True,
    )
    batch = run_batch(
        spec,
        experiment_count=cfg.experiment.experiment_count,
        base_seed=cfg.experiment.base_seed,
        max_workers=cfg.experiment.max_workers,
    )
    batch.raise_for_failures()

    curve = batch.median(batch.convergence(window=cfg.experiment.convergence_window))
    density_curve = batch.median("density")
    print(f"\n=== Median convergence ({len(batch.succeeded)} experiments) ===")
    for t in range(0, len(curve), 10):
        print(f"t={t + 1:3d}  convergence={curve[t]:.3f}  density={density_curve[t]:.2f}")
    print(batch_summary(batch, window=cfg.experiment.convergence_window,
                        limit=cfg.experiment.convergence_limit))

    # Pattern completion on the first experiment's trained region
    print("\n=== Pattern completion ===")
    first = batch.results[0]
    trained = first.final
    assembly = project(trained, first.stimulus, cfg.experiment.projection_horizon)
    rng = np.random.default_rng(0)
    for fraction in (0.25, 0.5, 0.75, 1.0):
        cue = subset(first.stimulus, fraction, rng)
        response = probe(trained, cue).active
        print(f"cue {fraction:4.0%}: {count(response & assembly)}/{count(assembly)} assembly neurons")


if __name__ == "__main__":
    main()
