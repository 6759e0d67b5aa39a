"""
The two representations of the network state.

`FullNetwork` is the persistent network object. It carries a networkx graph of the current edges with the node
attributes, the activity spells of every edge and node (so the network at any past step can be extracted with
:meth:`FullNetwork.networkAt`) and the trace of the monitored statistics.

`CompactNetwork` only carries the current edge list and a reference to the node attribute table, plus the current
time and the step at which each edge last changed when durations are tracked. It is meant for large populations.

Exactly one of them is used in a given run.
"""
import logging
import math
from typing import Dict, Iterable, List, Optional, Union

import networkx as nx  # type: ignore
import numpy as np  # type: ignore
import pandas as pd  # type: ignore

from dynamic_network_sim.terms import Edge, toEdgelist

logger = logging.getLogger(__name__)

Spell = List[float]


def graphAttributes(graph: nx.Graph) -> pd.DataFrame:
    """Node attribute table of a graph whose nodes are labelled 0..n-1

    :param graph: networkx graph
    :return: one row per node, one column per node attribute
    """
    if sorted(graph.nodes()) != list(range(graph.number_of_nodes())):
        raise ValueError("Graph nodes must be labelled 0..n-1")
    nodes = dict(graph.nodes(data=True))
    return pd.DataFrame([nodes[node] for node in range(len(nodes))], index=range(len(nodes)))


def inactiveEdges(el: np.ndarray, active: np.ndarray) -> np.ndarray:
    """Edges of el with at least one inactive end"""
    if len(el) == 0:
        return el
    active = np.asarray(active, dtype=bool)
    return el[~(active[el[:, 0]] & active[el[:, 1]])]


class FullNetwork:
    """
    Network object carrying its full history

    :param attributes: node attribute table, one row per node
    :param edgelist: edges present at creation. They have been active since before the simulation started
    :param stats: trace of monitored statistics, one row per simulated step
    :param time: the current time step
    """

    def __init__(
            self,
            attributes: pd.DataFrame,
            edgelist: Optional[Iterable[Iterable[int]]] = None,
            stats: Optional[pd.DataFrame] = None,
            time: int = 0,
    ):
        self.graph = nx.Graph()
        self.edgeSpells: Dict[Edge, List[Spell]] = {}
        self.vertexSpells: Dict[int, List[Spell]] = {}
        self.stats = stats if stats is not None else pd.DataFrame()
        self.time = time
        self.syncNodes(attributes)
        for i, j in toEdgelist(edgelist).tolist():
            self.graph.add_edge(i, j)
            self.edgeSpells[(i, j)] = [[-math.inf, math.inf]]

    def syncNodes(self, attributes: pd.DataFrame):
        """Adds the nodes which are new in the attribute table and updates the attributes of every node"""
        for node, attrs in attributes.to_dict(orient="index").items():
            self.graph.add_node(node, **attrs)

    def edgelist(self) -> np.ndarray:
        """The current edges as a canonical edge list"""
        return toEdgelist(self.graph.edges())

    def activateVertices(self, onset: float, terminus: float = math.inf, vertices: Optional[Iterable[int]] = None):
        """Marks vertices as active over [onset, terminus). Defaults to every vertex"""
        if vertices is None:
            vertices = self.graph.nodes()
        for vertex in vertices:
            self.vertexSpells.setdefault(vertex, []).append([onset, terminus])

    def deactivateVertices(self, at: float, vertices: Iterable[int]):
        """Ends at ``at`` the open activity spell of each of the vertices"""
        for vertex in vertices:
            spells = self.vertexSpells.get(vertex)
            if spells and spells[-1][1] > at:
                spells[-1][1] = at

    def isVertexActive(self, vertex: int, at: float) -> bool:
        return any(onset <= at < terminus for onset, terminus in self.vertexSpells.get(vertex, []))

    def applyToggles(self, formed: np.ndarray, dissolved: np.ndarray, at: int):
        """Forms and dissolves edges at time step ``at``

        :param formed: edges which start at ``at``
        :param dissolved: edges which end at ``at``
        :param at: the time step
        """
        for i, j in dissolved.tolist():
            self.graph.remove_edge(i, j)
            self.edgeSpells[(i, j)][-1][1] = at
        for i, j in formed.tolist():
            self.graph.add_edge(i, j)
            self.edgeSpells.setdefault((i, j), []).append([at, math.inf])
        self.time = at

    def appendStats(self, row: pd.DataFrame):
        self.stats = pd.concat([self.stats, row], ignore_index=True) if len(self.stats) else row.reset_index(drop=True)

    def networkAt(self, at: float) -> nx.Graph:
        """Extracts the network as it was at time step ``at``

        :param at: time step
        :return: graph with every node and the edges active at ``at``
        """
        graph = nx.Graph()
        graph.add_nodes_from(self.graph.nodes(data=True))
        for edge, spells in self.edgeSpells.items():
            if any(onset <= at < terminus for onset, terminus in spells):
                graph.add_edge(*edge)
        return graph

    def lastToggle(self) -> Dict[Edge, int]:
        """Time step at which each edge last changed. Edges which never changed during the simulation are left out"""
        lasttoggle = {}
        for edge, spells in self.edgeSpells.items():
            onset, terminus = spells[-1]
            last = terminus if math.isfinite(terminus) else onset
            if math.isfinite(last):
                lasttoggle[edge] = int(last)
        return lasttoggle


class CompactNetwork:
    """
    Edge list only network state

    :param edgelist: current edges
    :param attributes: the shared node attribute table
    :param time: current time step, only kept when durations are tracked
    :param lasttoggle: time step at which each edge last changed, only kept when durations are tracked
    """

    def __init__(
            self,
            edgelist: Optional[Iterable[Iterable[int]]],
            attributes: pd.DataFrame,
            time: Optional[int] = None,
            lasttoggle: Optional[Dict[Edge, int]] = None,
    ):
        self.el = toEdgelist(edgelist)
        self.attributes = attributes
        self.time = time
        self.lasttoggle = lasttoggle

    @property
    def tracksDuration(self) -> bool:
        return self.lasttoggle is not None

    def update(self, edgelist: np.ndarray, formed: np.ndarray, dissolved: np.ndarray, at: int):
        """Replaces the edge list with the network at time step ``at``, recording which edges changed"""
        self.el = edgelist
        if self.tracksDuration:
            self.time = at
            for edge in formed.tolist() + dissolved.tolist():
                self.lasttoggle[tuple(edge)] = at


def compactFromFull(network: FullNetwork, attributes: pd.DataFrame, trackDuration: bool) -> CompactNetwork:
    """Converts the full network into the compact representation, at the start of a compact run

    :param network: the full network
    :param attributes: the node attribute table the compact network will share
    :param trackDuration: whether to carry the time and the last toggle of each edge
    :return: the compact network
    """
    if trackDuration:
        return CompactNetwork(network.edgelist(), attributes, time=network.time, lasttoggle=network.lastToggle())
    return CompactNetwork(network.edgelist(), attributes)


NetworkState = Union[FullNetwork, CompactNetwork]
