"""Tests for region_network: topology validation and one-edge-per-tick propagation.

Covers:
- Validation of adjacency matrices (virtual input/output rules, widths)
- Tick semantics on feedforward and reciprocal circuits
- Order independence, accumulation of concurrent stimuli
- Equivalence of a two-region chain with standalone stepping
- reset / clone
"""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from assembly_config import RegionConfig
from assembly_foundation import (
    MinicolumnRegion,
    NetworkConfigurationError,
    Region,
    RegionContractError,
    RegionOutput,
    empty_activation,
    freeze,
    from_indices,
)
from assembly_ops import sparse_random
from experiment_runner import ExperimentSpec, run_batch, run_experiment
from region_network import Network, NodeKind, describe


# ── Fixtures ──────────────────────────────────────────────────────────


class EchoRegion(Region):
    """Stub region whose output is its input."""

    def __init__(self, size):
        self.size = size
        self.inputs = []
        self.resets = 0

    @property
    def input_size(self):
        return self.size

    @property
    def output_size(self):
        return self.size

    def step(self, x, learn=True):
        self.inputs.append(np.array(x, dtype=bool))
        return self.read(x)

    def read(self, x):
        return RegionOutput(freeze(x), empty_activation(self.size))

    def reset(self):
        self.resets += 1

    def distal_synapse_weights(self):
        return np.zeros((self.size, self.size), dtype=np.float32)


class WrongWidthRegion(EchoRegion):
    """Violates the contract: output one neuron too wide."""

    def step(self, x, learn=True):
        return RegionOutput(np.zeros(self.size + 1, dtype=bool), empty_activation(self.size))


def chain_adjacency():
    # A -> B -> out, in -> A
    return np.array([
        [0, 1, 0, 0],
        [0, 0, 0, 1],
        [1, 0, 0, 0],
        [0, 0, 0, 0],
    ])


def reciprocal_adjacency():
    # A <-> B, in -> A, B -> out
    return np.array([
        [0, 1, 0, 0],
        [1, 0, 0, 1],
        [1, 0, 0, 0],
        [0, 0, 0, 0],
    ])


def small_config(**overrides):
    params = dict(
        input_size=120,
        n_columns=48,
        cells_per_column=4,
        sparsity=0.125,
        activate_threshold=4,
        learn_threshold=3,
        synapse_sample_size=10,
        seed=5,
    )
    params.update(overrides)
    return RegionConfig(**params)


# ── Validation ────────────────────────────────────────────────────────


class TestTopologyValidation:
    """Invalid adjacency matrices raise NetworkConfigurationError."""

    def test_valid_chain(self):
        net = Network([EchoRegion(4), EchoRegion(4)], chain_adjacency())
        kinds = [node.kind for node in net.nodes]
        assert kinds == [NodeKind.REGION, NodeKind.REGION, NodeKind.INPUT, NodeKind.OUTPUT]
        assert net.input_sizes == (4,)
        assert net.output_sizes == (4,)

    def test_wrong_dimensions(self):
        with pytest.raises(NetworkConfigurationError):
            Network([EchoRegion(4), EchoRegion(4)], np.zeros((3, 3)))

    def test_edge_into_input(self):
        adj = chain_adjacency()
        adj[1, 2] = 1
        with pytest.raises(NetworkConfigurationError):
            Network([EchoRegion(4), EchoRegion(4)], adj)

    def test_edge_out_of_output(self):
        adj = chain_adjacency()
        adj[3, 0] = 1
        with pytest.raises(NetworkConfigurationError):
            Network([EchoRegion(4), EchoRegion(4)], adj)

    def test_input_feeding_no_region(self):
        adj = chain_adjacency()
        adj[2, 0] = 0
        with pytest.raises(NetworkConfigurationError):
            Network([EchoRegion(4), EchoRegion(4)], adj)

    def test_input_directly_to_output(self):
        adj = chain_adjacency()
        adj[2, 3] = 1
        with pytest.raises(NetworkConfigurationError):
            Network([EchoRegion(4), EchoRegion(4)], adj)

    def test_output_without_source(self):
        adj = chain_adjacency()
        adj[1, 3] = 0
        with pytest.raises(NetworkConfigurationError):
            Network([EchoRegion(4), EchoRegion(4)], adj)

    def test_region_without_inbound_edge(self):
        adj = np.array([
            [0, 0, 0, 1],
            [0, 0, 0, 0],
            [1, 0, 0, 0],
            [0, 0, 0, 0],
        ])
        with pytest.raises(NetworkConfigurationError):
            Network([EchoRegion(4), EchoRegion(4)], adj)

    def test_width_mismatch_along_edge(self):
        with pytest.raises(NetworkConfigurationError):
            Network([EchoRegion(4), EchoRegion(5)], chain_adjacency())

    def test_configuration_error_is_value_error(self):
        with pytest.raises(ValueError):
            Network([EchoRegion(4)], np.zeros((3, 3)))

    def test_adjacency_is_read_only(self):
        net = Network([EchoRegion(4), EchoRegion(4)], chain_adjacency())
        with pytest.raises(ValueError):
            net.adjacency[0, 0] = True

    def test_describe(self):
        net = Network([EchoRegion(4), EchoRegion(4)], reciprocal_adjacency())
        info = describe(net)
        assert info == {
            "regions": 2, "inputs": 1, "outputs": 1, "edges": 4, "reciprocal_pairs": 1,
        }


# ── Propagation ───────────────────────────────────────────────────────


class TestPropagation:
    """Signals advance exactly one edge per tick."""

    def test_chain_delays_by_one_tick(self):
        net = Network([EchoRegion(4), EchoRegion(4)], chain_adjacency())
        s = from_indices([1, 2], 4)
        first = net.step(s)
        assert first.timestep == 1
        assert first.activity[0].tolist() == s.tolist()
        assert not first.activity[1].any()
        assert first.outputs[0].tolist() == [False] * 4

        second = net.step(None)
        assert not second.activity[0].any()
        assert second.activity[1].tolist() == s.tolist()
        assert second.outputs[0].tolist() == s.tolist()

    def test_reciprocal_signal_bounces(self):
        net = Network([EchoRegion(4), EchoRegion(4)], reciprocal_adjacency())
        s = from_indices([0, 3], 4)
        steps = net.run([s, None, None, None])
        a = [st.activity[0].tolist() for st in steps]
        b = [st.activity[1].tolist() for st in steps]
        empty = [False] * 4
        assert a == [s.tolist(), empty, s.tolist(), empty]
        assert b == [empty, s.tolist(), empty, s.tolist()]

    def test_stimulus_and_feedback_accumulate(self):
        net = Network([EchoRegion(4), EchoRegion(4)], reciprocal_adjacency())
        s1 = from_indices([0], 4)
        s2 = from_indices([1], 4)
        net.step(s1)
        net.step(None)
        # A_3 = s2 | B_2 = s2 | s1
        third = net.step(s2)
        assert third.activity[0].tolist() == [True, True, False, False]

    def test_two_inputs_accumulate(self):
        adj = np.array([
            [0, 0, 0, 1],
            [1, 0, 0, 0],
            [1, 0, 0, 0],
            [0, 0, 0, 0],
        ])
        net = Network([EchoRegion(4)], adj, n_inputs=2, n_outputs=1)
        out = net.step([from_indices([0], 4), from_indices([3], 4)])
        assert out.activity[0].tolist() == [True, False, False, True]

    def test_wrong_number_of_inputs(self):
        net = Network([EchoRegion(4), EchoRegion(4)], chain_adjacency())
        with pytest.raises(ValueError):
            net.step([from_indices([0], 4), from_indices([1], 4)])

    def test_single_activation_as_plain_list(self):
        net = Network([EchoRegion(4), EchoRegion(4)], chain_adjacency())
        out = net.step([0, 1, 1, 0])
        assert out.activity[0].tolist() == [False, True, True, False]

    def test_plain_list_width_still_checked(self):
        net = Network([EchoRegion(4), EchoRegion(4)], chain_adjacency())
        with pytest.raises(ValueError, match="width"):
            net.step([0, 1, 1])

    def test_self_loop_feeds_back_previous_output(self):
        adj = np.array([
            [1, 0, 1],
            [1, 0, 0],
            [0, 0, 0],
        ])
        net = Network([EchoRegion(3)], adj)
        s = from_indices([2], 3)
        net.step(s)
        out = net.step(None)
        assert out.activity[0].tolist() == [False, False, True]

    def test_pending_holds_next_tick_input(self):
        net = Network([EchoRegion(4), EchoRegion(4)], chain_adjacency())
        s = from_indices([1], 4)
        net.step(s)
        assert not net.pending[0].any()
        assert net.pending[1].tolist() == s.tolist()

    def test_order_must_be_permutation(self):
        net = Network([EchoRegion(4), EchoRegion(4)], chain_adjacency())
        with pytest.raises(ValueError):
            net.step(None, order=[0, 0])

    def test_contract_violation_detected(self):
        net = Network([WrongWidthRegion(4), EchoRegion(4)], chain_adjacency())
        with pytest.raises(RegionContractError):
            net.step(from_indices([0], 4))

    def test_contract_violation_in_standalone_experiment(self):
        spec = ExperimentSpec(target=WrongWidthRegion(4), stimulus=from_indices([0], 4), horizon=3)
        with pytest.raises(RegionContractError):
            run_experiment(spec)

    def test_contract_violation_fails_batch_experiment(self):
        spec = ExperimentSpec(target=WrongWidthRegion(4), stimulus=from_indices([0], 4), horizon=3)
        batch = run_batch(spec, experiment_count=2)
        assert len(batch.failures) == 2
        assert all(isinstance(e, RegionContractError) for e in batch.failures.values())


class TestLearningNetworks:
    """Networks of MinicolumnRegions."""

    def _reciprocal(self):
        # Reciprocal edges need input width == output width on both sides
        cfg = small_config()
        merge = cfg.with_input_size(cfg.n_neurons)
        a = MinicolumnRegion(merge)
        b = MinicolumnRegion(merge.with_seed(6))
        adj = np.zeros((4, 4), dtype=int)
        adj[0, 1] = adj[1, 0] = 1
        adj[2, 0] = 1
        adj[1, 3] = 1
        return Network([a, b], adj)

    def test_update_order_is_irrelevant(self):
        net = self._reciprocal()
        s = sparse_random(net.input_sizes[0], 0.1, np.random.default_rng(0))
        forward = net.clone()
        backward = net.clone()
        for _ in range(8):
            f = forward.step(s, order=[0, 1])
            b = backward.step(s, order=[1, 0])
            for x, y in zip(f.activity, b.activity):
                assert np.array_equal(x, y)

    def test_chain_matches_standalone_stepping(self):
        cfg = small_config()
        a = MinicolumnRegion(cfg)
        b = MinicolumnRegion(cfg.with_input_size(a.output_size).with_seed(9))
        net = Network([a.clone(), b.clone()], chain_adjacency())

        rng = np.random.default_rng(1)
        stimuli = [sparse_random(cfg.input_size, 0.1, rng) for _ in range(10)]
        steps = net.run(stimuli + [None])

        assert not steps[0].activity[1].any()
        for t, s in enumerate(stimuli):
            expected = b.step(a.step(s).active).active
            assert np.array_equal(steps[t + 1].activity[1], expected)
            assert np.array_equal(steps[t + 1].outputs[0], expected)

    def test_clone_is_independent(self):
        net = self._reciprocal()
        s = sparse_random(net.input_sizes[0], 0.1, np.random.default_rng(0))
        net.step(s)
        weights = net.regions[0].distal_synapse_weights().copy()
        twin = net.clone()
        for _ in range(5):
            twin.step(s)
        assert net.timestep == 1
        assert twin.timestep == 6
        assert np.array_equal(net.regions[0].distal_synapse_weights(), weights)

    def test_reset(self):
        echo_a, echo_b = EchoRegion(4), EchoRegion(4)
        net = Network([echo_a, echo_b], reciprocal_adjacency())
        net.run([from_indices([0], 4)] * 3)
        net.reset()
        assert net.timestep == 0
        assert echo_a.resets == 1 and echo_b.resets == 1
        assert not any(p.any() for p in net.pending)
        assert not any(x.any() for x in net.activity)
