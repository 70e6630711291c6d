"""Reciprocal projection example for AssemblyGraph.

Wires two merge regions A and B into the circuit

      in --> A --> B --> out
             ^     |
             +-----+

and compares how the assemblies of both regions settle when A also
receives B's feedback.
"""

import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import numpy as np

from assembly_config import load_config
from assembly_foundation import MinicolumnRegion
from assembly_ops import sparse_random
from experiment_runner import ExperimentSpec, run_batch
from region_network import Network, describe


def build_network(cfg):
    # A receives B's output, so both are merge regions (input width = neurons)
    merge_params = cfg.region.with_input_size(cfg.region.n_neurons)
    a = MinicolumnRegion(merge_params.with_seed(cfg.region.seed + 1))
    b = MinicolumnRegion(merge_params.with_seed(cfg.region.seed + 2))
    #            A  B  in out
    adjacency = [[0, 1, 0, 0],
                 [1, 0, 0, 1],
                 [1, 0, 0, 0],
                 [0, 0, 0, 0]]
    return Network([a, b], np.array(adjacency))


def main():
    cfg = load_config({"experiment": {"horizon": 40}})
    net = build_network(cfg)
    print(net)
    print(describe(net))

    # Stimuli are responses of an untrained input region to random bits
    input_region = MinicolumnRegion(cfg.region)
    density = 1 / np.sqrt(20000 / 15)
    spec = ExperimentSpec(
        target=net,
        stimulus=lambda rng: input_region(sparse_random(cfg.region.input_size, density, rng)).active,
        horizon=cfg.experiment.horizon,
        measure_interconnection=True,
    )
    batch = run_batch(spec, cfg.experiment.experiment_count, base_seed=cfg.experiment.base_seed)
    batch.raise_for_failures()

    window = cfg.experiment.convergence_window
    conv_a = batch.median(batch.convergence(node=0, window=window))
    conv_b = batch.median(batch.convergence(node=1, window=window))
    inter_a = batch.median("interconnected", node=0)
    inter_b = batch.median("interconnected", node=1)

    print("\n   t   conv A   conv B   inter A   inter B")
    for t in range(0, len(conv_a), 5):
        print(f"{t + 1:4d}   {conv_a[t]:.3f}    {conv_b[t]:.3f}   {inter_a[t]:7.0f}   {inter_b[t]:7.0f}")


if __name__ == "__main__":
    main()
