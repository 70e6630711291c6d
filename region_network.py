"""
Region Network - Directed signal propagation between regions.

Wires ``Region`` instances into a directed graph described by an adjacency
matrix.  External input and output are ordinary graph nodes ("virtual"
nodes with no backing region) appended after the regions, so the
propagation rule is uniform and arbitrary reciprocal circuits are purely
declarative.  For the circuit

      in --> A --> B --> out
             ^     |
             +-----+

the adjacency matrix (rows = source, columns = target) is::

              A  B  in out
        A   [ 0, 1, 0, 0 ]
        B   [ 1, 0, 0, 1 ]
        in  [ 1, 0, 0, 0 ]
        out [ 0, 0, 0, 0 ]

Propagation (one edge per tick): with ``a`` presented at the input,
``A_t = A(a | B_{t-1})`` and ``B_t = B(A_{t-1})``.  Every tick is computed
from a snapshot of the previous tick, so no region ever observes an output
produced during the same tick and the visiting order is irrelevant.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, List, Optional, Sequence, Tuple, Union

import numpy as np

from assembly_foundation import (
    Activation,
    NetworkConfigurationError,
    Region,
    as_activation,
    checked_output,
    empty_activation,
    freeze,
)

logger = logging.getLogger("assemblygraph.network")

NetworkInput = Union[None, Activation, Sequence[Optional[Activation]]]


# ---------------------------------------------------------------------------
# Nodes
# ---------------------------------------------------------------------------

class NodeKind(Enum):
    """Role of a node in the adjacency matrix."""
    REGION = auto()
    INPUT = auto()
    OUTPUT = auto()


@dataclass(frozen=True)
class NetworkNode:
    """One row/column of the adjacency matrix.

    Attributes:
        index: Position in the adjacency matrix.
        kind: REGION, INPUT or OUTPUT.
        region: Backing region (REGION nodes only).
    """

    index: int
    kind: NodeKind
    region: Optional[Region] = None


@dataclass
class NetworkStep:
    """Result returned from Network.step().

    Attributes:
        timestep: Tick this result corresponds to (first tick is 1).
        activity: Active neurons of each region, in declaration order.
        predictive: Predictive neurons of each region.
        outputs: Value of each virtual output node.
    """

    timestep: int
    activity: Tuple[Activation, ...]
    predictive: Tuple[Activation, ...]
    outputs: Tuple[Activation, ...]


# ---------------------------------------------------------------------------
# Network
# ---------------------------------------------------------------------------

class Network:
    """Directed network of regions with virtual input/output nodes.

    Index layout of ``adjacency``: regions ``0..R-1`` in declaration order,
    then ``n_inputs`` virtual inputs, then ``n_outputs`` virtual outputs.
    Any non-zero entry ``adjacency[i, j]`` is an edge ``i → j``.

    Args:
        regions: Regions owned by the network.
        adjacency: Square boolean or weighted matrix of size R + I + O.
        n_inputs: Number of virtual input nodes.
        n_outputs: Number of virtual output nodes.

    Raises:
        NetworkConfigurationError: wrong dimensions, edges into an input,
            edges out of an output, unconnected virtual nodes, regions with
            no inbound edge, or incompatible widths along an edge.
    """

    def __init__(
        self,
        regions: Sequence[Region],
        adjacency,
        n_inputs: int = 1,
        n_outputs: int = 1,
    ):
        if n_inputs < 1 or n_outputs < 0:
            raise NetworkConfigurationError("Need at least one input node and n_outputs >= 0")
        self._regions: List[Region] = list(regions)
        self.n_inputs = n_inputs
        self.n_outputs = n_outputs

        edges = np.asarray(adjacency)
        size = len(self._regions) + n_inputs + n_outputs
        if edges.shape != (size, size):
            raise NetworkConfigurationError(
                f"Adjacency must be {size}x{size} for {len(self._regions)} regions, "
                f"{n_inputs} inputs and {n_outputs} outputs; got shape {edges.shape}"
            )
        self._adjacency = edges != 0
        self._adjacency.flags.writeable = False

        self.nodes: Tuple[NetworkNode, ...] = tuple(
            [NetworkNode(i, NodeKind.REGION, r) for i, r in enumerate(self._regions)]
            + [NetworkNode(i, NodeKind.INPUT) for i in self._input_indices]
            + [NetworkNode(i, NodeKind.OUTPUT) for i in self._output_indices]
        )

        self._validate_topology()

        r = len(self._regions)
        # Region → region predecessors; input → fed regions; output ← regions
        self._predecessors: List[List[int]] = [
            [p for p in range(r) if self._adjacency[p, t]] for t in range(r)
        ]
        self._input_targets: List[List[int]] = [
            [t for t in range(r) if self._adjacency[i, t]] for i in self._input_indices
        ]
        self._output_sources: List[List[int]] = [
            [p for p in range(r) if self._adjacency[p, o]] for o in self._output_indices
        ]
        self.input_sizes: Tuple[int, ...] = tuple(
            self._regions[targets[0]].input_size for targets in self._input_targets
        )
        self.output_sizes: Tuple[int, ...] = tuple(
            self._regions[sources[0]].output_size for sources in self._output_sources
        )

        self._pending: List[Activation] = []
        self._activity: Tuple[Activation, ...] = ()
        self._predictive: Tuple[Activation, ...] = ()
        self.timestep: int = 0
        self._clear_buffers()

        logger.debug(
            "Network with %d regions, %d inputs, %d outputs, %d edges",
            r, n_inputs, n_outputs, int(np.count_nonzero(self._adjacency)),
        )

    # -----------------------------------------------------------------------
    # Validation
    # -----------------------------------------------------------------------

    @property
    def _input_indices(self) -> range:
        r = len(self._regions)
        return range(r, r + self.n_inputs)

    @property
    def _output_indices(self) -> range:
        r = len(self._regions) + self.n_inputs
        return range(r, r + self.n_outputs)

    def _validate_topology(self) -> None:
        adj = self._adjacency
        r = len(self._regions)

        for i in self._input_indices:
            if adj[:, i].any():
                raise NetworkConfigurationError(f"Virtual input node {i} has inbound edges")
            if not adj[i, :r].any():
                raise NetworkConfigurationError(f"Virtual input node {i} feeds no region")
            if adj[i, r:].any():
                raise NetworkConfigurationError(
                    f"Virtual input node {i} connects directly to a virtual node"
                )
        for o in self._output_indices:
            if adj[o, :].any():
                raise NetworkConfigurationError(f"Virtual output node {o} has outbound edges")
            if not adj[:r, o].any():
                raise NetworkConfigurationError(f"Virtual output node {o} has no source region")
        for t in range(r):
            if not adj[:, t].any():
                raise NetworkConfigurationError(
                    f"Region {t} has no inbound edge and would never be stimulated"
                )

        # Width compatibility along every edge
        for t, target in enumerate(self._regions):
            for p in range(r):
                if adj[p, t] and self._regions[p].output_size != target.input_size:
                    raise NetworkConfigurationError(
                        f"Region {p} outputs {self._regions[p].output_size} neurons but "
                        f"region {t} expects input width {target.input_size}"
                    )
        for i in self._input_indices:
            widths = {self._regions[t].input_size for t in range(r) if adj[i, t]}
            if len(widths) > 1:
                raise NetworkConfigurationError(
                    f"Regions fed by input node {i} disagree on input width: {sorted(widths)}"
                )
        for o in self._output_indices:
            widths = {self._regions[p].output_size for p in range(r) if adj[p, o]}
            if len(widths) > 1:
                raise NetworkConfigurationError(
                    f"Regions feeding output node {o} disagree on width: {sorted(widths)}"
                )

    # -----------------------------------------------------------------------
    # Accessors
    # -----------------------------------------------------------------------

    @property
    def regions(self) -> Tuple[Region, ...]:
        return tuple(self._regions)

    @property
    def adjacency(self) -> np.ndarray:
        """Read-only boolean adjacency matrix."""
        return self._adjacency

    @property
    def activity(self) -> Tuple[Activation, ...]:
        """Per-region outputs of the last tick (all-false before the first)."""
        return self._activity

    @property
    def pending(self) -> Tuple[Activation, ...]:
        """Per-region input queued for the next tick (excluding external input)."""
        return tuple(self._pending)

    def __len__(self) -> int:
        return len(self._regions)

    def __repr__(self) -> str:
        return (f"Network(regions={len(self._regions)}, inputs={self.n_inputs}, "
                f"outputs={self.n_outputs}, t={self.timestep})")

    # -----------------------------------------------------------------------
    # Simulation
    # -----------------------------------------------------------------------

    def step(
        self,
        network_input: NetworkInput = None,
        order: Optional[Sequence[int]] = None,
    ) -> NetworkStep:
        """Advance one tick.

        Pipeline:
            1. OR each input node's stimulus into the queued input of the
               regions it feeds (concurrent stimuli accumulate)
            2. Step every region with its queued input (learning)
            3. Queue, for the next tick, the OR of each region's
               predecessor outputs from this tick; each output node takes
               the OR of its source regions' outputs from this tick

        Args:
            network_input: One activation (single input node) or one entry
                per input node; ``None`` entries mean no stimulus.
            order: Order in which regions are stepped; any permutation of
                ``range(len(regions))`` gives the same result.

        Returns:
            NetworkStep with the activity of every region and output node.

        Raises:
            RegionContractError: a region returned an output of the wrong
                width or type.
        """
        stimuli = self._normalize_input(network_input)
        r = len(self._regions)

        # 1. Snapshot of the inputs for this tick
        feed: List[Activation] = list(self._pending)
        for i, stimulus in enumerate(stimuli):
            if stimulus is None:
                continue
            for t in self._input_targets[i]:
                feed[t] = freeze(np.logical_or(feed[t], stimulus))

        # 2. Step every region from the snapshot
        visit = range(r) if order is None else list(order)
        if sorted(visit) != list(range(r)):
            raise ValueError(f"order must be a permutation of range({r})")
        activity: List[Optional[Activation]] = [None] * r
        predictive: List[Optional[Activation]] = [None] * r
        for t in visit:
            out = checked_output(self._regions[t], self._regions[t].step(feed[t]), f"Region {t}")
            activity[t] = out.active
            predictive[t] = out.predictive

        # 3. Queue next tick's inputs; consumed buffers are dropped
        self._pending = [self._gather(self._predecessors[t], self._regions[t].input_size, activity)
                         for t in range(r)]
        outputs = tuple(
            self._gather(sources, self.output_sizes[o], activity)
            for o, sources in enumerate(self._output_sources)
        )

        self.timestep += 1
        self._activity = tuple(activity)
        self._predictive = tuple(predictive)
        return NetworkStep(
            timestep=self.timestep,
            activity=self._activity,
            predictive=self._predictive,
            outputs=outputs,
        )

    def run(self, stimuli: Sequence[NetworkInput]) -> List[NetworkStep]:
        """Step once per stimulus; returns all NetworkSteps."""
        return [self.step(s) for s in stimuli]

    def reset(self) -> None:
        """Reset every region's context and clear all queued inputs."""
        for region in self._regions:
            region.reset()
        self._clear_buffers()
        self.timestep = 0

    def clone(self) -> "Network":
        """Independent deep copy (regions included)."""
        return copy.deepcopy(self)

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _clear_buffers(self) -> None:
        self._pending = [empty_activation(region.input_size) for region in self._regions]
        self._activity = tuple(empty_activation(region.output_size) for region in self._regions)
        self._predictive = self._activity

    def _normalize_input(self, network_input: NetworkInput) -> List[Optional[Activation]]:
        if network_input is None:
            return [None] * self.n_inputs
        entries: List[Optional[Activation]] = list(network_input)
        if isinstance(network_input, np.ndarray) and network_input.ndim == 1:
            entries = [network_input]
        elif self.n_inputs == 1 and entries and all(np.isscalar(e) for e in entries):
            # A flat list of bits is one activation, not one entry per input
            entries = [np.asarray(entries)]
        if len(entries) != self.n_inputs:
            raise ValueError(f"Expected {self.n_inputs} input activations, got {len(entries)}")
        return [
            None if e is None else as_activation(e, self.input_sizes[i])
            for i, e in enumerate(entries)
        ]

    @staticmethod
    def _gather(sources: Sequence[int], size: int, activity: Sequence[Activation]) -> Activation:
        if not sources:
            return empty_activation(size)
        return freeze(np.logical_or.reduce([activity[p] for p in sources]))


def describe(network: Network) -> Dict[str, object]:
    """Summary of a network's structure for logs and event records."""
    adj = network.adjacency
    between = adj[: len(network), : len(network)]
    return {
        "regions": len(network),
        "inputs": network.n_inputs,
        "outputs": network.n_outputs,
        "edges": int(np.count_nonzero(adj)),
        "reciprocal_pairs": int(np.count_nonzero(np.triu(between & between.T, k=1))),
    }
