"""Tests for assembly_ops: project, probe, subset, sparse_random and the protocols."""

import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from assembly_config import RegionConfig
from assembly_foundation import MinicolumnRegion, count, empty_activation, from_indices
from assembly_metrics import overlap
from assembly_ops import (
    DEFAULT_PROJECTION_HORIZON,
    association_trace,
    completion_recall,
    probe,
    project,
    sparse_random,
    subset,
)


def small_region(seed=3):
    return MinicolumnRegion(RegionConfig(
        input_size=200,
        n_columns=64,
        cells_per_column=4,
        sparsity=0.125,
        activate_threshold=5,
        learn_threshold=3,
        synapse_sample_size=12,
        seed=seed,
    ))


@pytest.fixture
def region():
    return small_region()


@pytest.fixture
def stimulus():
    return sparse_random(200, 0.1, np.random.default_rng(1))


class TestProject:

    def test_default_horizon(self):
        assert DEFAULT_PROJECTION_HORIZON == 30

    def test_steps_exactly_horizon_times(self, region, stimulus):
        project(region, stimulus, horizon=7)
        assert region.timestep == 7

    def test_returns_last_active_set(self, region, stimulus):
        twin = region.clone()
        assembly = project(region, stimulus, horizon=6)
        for _ in range(5):
            twin.step(stimulus)
        assert np.array_equal(assembly, twin.step(stimulus).active)

    def test_projection_is_one_cell_per_column(self, region, stimulus):
        assembly = project(region, stimulus, horizon=10)
        assert count(assembly) == region.config.active_columns

    @pytest.mark.parametrize("horizon", [0, -3, 2.5, True])
    def test_invalid_horizon(self, region, stimulus, horizon):
        with pytest.raises(ValueError):
            project(region, stimulus, horizon=horizon)


class TestProbe:
    """probe never modifies the region it is given."""

    def test_idempotent(self, region, stimulus):
        project(region, stimulus, horizon=4)
        first = probe(region, stimulus)
        second = probe(region, stimulus)
        assert np.array_equal(first.active, second.active)
        assert np.array_equal(first.predictive, second.predictive)

    def test_leaves_region_untouched(self, region, stimulus):
        project(region, stimulus, horizon=4)
        distal = region._distal.tobytes()
        weights = region.distal_synapse_weights().tobytes()
        before = region.read(stimulus)
        probe(region, stimulus)
        probe(region, sparse_random(200, 0.1, np.random.default_rng(2)))
        assert region._distal.tobytes() == distal
        assert region.distal_synapse_weights().tobytes() == weights
        assert region.timestep == 4
        after = region.read(stimulus)
        assert np.array_equal(before.active, after.active)
        assert np.array_equal(before.predictive, after.predictive)

    def test_familiar_stimulus_predicts_its_assembly(self, region, stimulus):
        assembly = project(region, stimulus, horizon=10)
        out = probe(region, stimulus)
        assert np.array_equal(out.active, assembly)
        assert overlap(out.predictive, assembly) == count(assembly)


class TestSubset:

    @pytest.mark.parametrize("fraction", [0.0, 0.1, 0.25, 0.5, 0.9, 1.0])
    def test_exact_cardinality(self, fraction):
        x = from_indices(range(0, 100, 3), 100)
        s = subset(x, fraction, np.random.default_rng(0))
        assert count(s) == int(round(fraction * count(x)))

    def test_is_subset(self):
        x = from_indices([2, 5, 7, 11, 13], 20)
        s = subset(x, 0.6, np.random.default_rng(0))
        assert not (s & ~x).any()

    def test_full_fraction_is_identity(self):
        x = from_indices([2, 5, 7], 10)
        assert np.array_equal(subset(x, 1.0), x)

    def test_empty_input(self):
        assert count(subset(empty_activation(10), 0.5)) == 0

    @pytest.mark.parametrize("fraction", [-0.1, 1.5])
    def test_fraction_out_of_range(self, fraction):
        with pytest.raises(ValueError):
            subset(from_indices([1], 4), fraction)


class TestSparseRandom:

    def test_shape_and_dtype(self):
        x = sparse_random(300, 0.1)
        assert x.shape == (300,)
        assert x.dtype == bool
        assert not x.flags.writeable

    def test_density(self):
        x = sparse_random(10000, 0.05, np.random.default_rng(0))
        assert 400 <= count(x) <= 600

    def test_seeded_is_reproducible(self):
        a = sparse_random(500, 0.1, np.random.default_rng(9))
        b = sparse_random(500, 0.1, np.random.default_rng(9))
        assert np.array_equal(a, b)

    def test_invalid_density(self):
        with pytest.raises(ValueError):
            sparse_random(10, 1.2)


class TestProtocols:

    def test_association_trace_length(self, region):
        rng = np.random.default_rng(4)
        a = sparse_random(200, 0.1, rng)
        b = sparse_random(200, 0.1, rng)
        points = association_trace(region, a, b, horizon=5, projection_horizon=8)
        assert len(points) == 6
        for p in points:
            assert p.ref_a >= 0 and p.ref_b >= 0
            assert p.association >= 0
        assert region.timestep == 8 + 8 + 5

    def test_completion_recall_bounds(self, region, stimulus):
        assembly = project(region, stimulus, horizon=10)
        recall = completion_recall(
            region, stimulus, assembly, [0.0, 1.0], np.random.default_rng(0)
        )
        assert recall.tolist() == [0.0, 100.0]
        assert region.timestep == 10

    def test_completion_recall_sentinel(self, region, stimulus):
        # An untrained region predicts nothing
        assembly = from_indices([0], region.output_size)
        recall = completion_recall(region, stimulus, assembly, [0.5, 1.0])
        assert recall.tolist() == [0.0, 0.0]
