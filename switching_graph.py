"""
switching_graph.py

Parameter graphs of a boolean switching network node.

The admissible (monotone and realizable) maps of a node are the vertices of
its parameter graph; two maps are joined when one is a neighbor of the other
(a single vertex differs by one output level). This module enumerates the
admissible maps exhaustively and grows the graph from seed maps with
NetworkX.
"""

import sys

import networkx as nx
from tqdm import tqdm

from switching_core import (
    MonotoneMap, is_monotonic, is_realizable, neighbors,
)


class InadmissibleMap(ValueError):
    """A seed handed to ParameterGraph is not monotone and realizable."""


# ============================================================================
# SECTION 1: EXHAUSTIVE ENUMERATION
# ============================================================================

def monotone_maps(n, m, factorization=None, constraints=None):
    """
    Generate every monotone map from {0,...,2^n-1} to {0,...,m}.

    Vertices are assigned in increasing order. Every vertex with one bit
    cleared is smaller, so its value is already fixed and bounds the
    current vertex from below.

    Args:
        n: number of inputs
        m: number of outputs
        factorization: passed through to each MonotoneMap
        constraints: passed through to each MonotoneMap

    Yields:
        MonotoneMap
    """
    template = MonotoneMap(n, m, factorization=factorization, constraints=constraints)
    size = 1 << n
    data = [0] * size

    def assign(vertex):
        if vertex == size:
            yield template.with_data(data)
            return
        low = 0
        for pos in range(n):
            bit = 1 << pos
            if vertex & bit:
                low = max(low, data[vertex ^ bit])
        for value in range(low, m + 1):
            data[vertex] = value
            yield from assign(vertex + 1)

    yield from assign(0)


def admissible_maps(n, m, factorization=None, constraints=None, verbose=False):
    """
    List every monotone map that is also realizable.

    Args:
        n: number of inputs
        m: number of outputs
        factorization: Factorization or sequence of factor sizes
        constraints: ConstraintSet or iterable of (mask, x, y) triples
        verbose: If True, print progress to stderr

    Returns:
        list of MonotoneMap

    Raises:
        UnsupportedFactorization: if the logic shape has no known algorithm
    """
    if verbose:
        print(f"Enumerating monotone maps (n={n}, m={m})...", file=sys.stderr)

    result = [mmap for mmap in tqdm(monotone_maps(n, m, factorization, constraints),
                                    disable=not verbose, unit="map")
              if is_realizable(mmap)]

    if verbose:
        print(f"Found {len(result)} admissible maps", file=sys.stderr)

    return result


# ============================================================================
# SECTION 2: PARAMETER GRAPH
# ============================================================================

class ParameterGraph:
    """
    Graph of admissible maps reachable from some seeds by neighbor steps.

    Wraps an undirected NetworkX Graph. Nodes are integer ids into
    map_list; maps are deduplicated with MonotoneMap equality, so the
    factorization and constraints of the first map seen are the ones kept.
    """

    def __init__(self, seeds, workers=None, verbose=False):
        """
        Grow the graph breadth first from the seeds.

        Args:
            seeds: iterable of monotone, realizable MonotoneMaps
            workers: threads per neighbor computation (see neighbors())
            verbose: If True, print progress to stderr

        Raises:
            InadmissibleMap: if a seed is not monotone and realizable
            UnsupportedFactorization: if a seed's logic shape has no known algorithm
        """
        self.map_list = []
        self._index = {}
        self.graph = nx.Graph()

        for seed in seeds:
            if not (is_monotonic(seed) and is_realizable(seed)):
                raise InadmissibleMap(f"Seed {seed.to_string()} is not monotone and realizable")
            self._add(seed)

        if not self.map_list:
            raise ValueError("Cannot build a parameter graph without seeds")

        if verbose:
            print(f"Building parameter graph from {len(self.map_list)} seeds...",
                  file=sys.stderr)

        progress = tqdm(disable=not verbose, unit="map")
        node = 0
        while node < len(self.map_list):
            for adjacent in neighbors(self.map_list[node], workers=workers):
                self.graph.add_edge(node, self._add(adjacent))
            node += 1
            progress.update(1)
        progress.close()

        if verbose:
            print(f"Parameter graph built: {len(self.map_list)} nodes, "
                  f"{self.graph.number_of_edges()} edges", file=sys.stderr)

    def _add(self, mmap):
        """Register mmap if new; return its node id."""
        node = self._index.get(mmap)
        if node is None:
            node = len(self.map_list)
            self._index[mmap] = node
            self.map_list.append(mmap)
            self.graph.add_node(node)
        return node

    def __len__(self):
        return len(self.map_list)

    def __contains__(self, mmap):
        return mmap in self._index

    def __iter__(self):
        return iter(self.map_list)

    def index(self, mmap):
        """Get the node id of a map (KeyError if absent)."""
        return self._index[mmap]

    def get_map(self, node_id):
        """Get the map associated with a node id"""
        return self.map_list[node_id]

    def neighbors_of(self, node_id):
        """Get the node ids adjacent to node_id"""
        return list(self.graph.neighbors(node_id))

    def components(self):
        """Return the connected components as sets of node ids."""
        return [set(component) for component in nx.connected_components(self.graph)]

    def is_connected(self):
        return nx.is_connected(self.graph)

    def edge_data(self):
        """
        Return the edges as pairs of data tuples.

        This is the form handed to external graph and database builders.
        """
        return [(self.map_list[i].data, self.map_list[j].data)
                for i, j in self.graph.edges()]
