import math

import networkx as nx
import numpy as np
import pandas as pd
import pytest

from dynamic_network_sim import networks


@pytest.fixture
def node_attributes():
    return pd.DataFrame({"active": [1, 1, 1, 1, 0], "race": [0, 1, 0, 1, 0]})


def test_graphAttributes():
    graph = nx.Graph()
    graph.add_node(1, race=1)
    graph.add_node(0, race=0)

    assert networks.graphAttributes(graph).to_dict(orient="list") == {"race": [0, 1]}


def test_graphAttributes_bad_labels():
    graph = nx.Graph()
    graph.add_nodes_from([0, 2])

    with pytest.raises(ValueError):
        networks.graphAttributes(graph)


def test_inactiveEdges():
    el = np.array([[0, 1], [1, 4], [2, 3]])

    assert networks.inactiveEdges(el, np.array([1, 1, 1, 1, 0])).tolist() == [[1, 4]]


def test_FullNetwork(node_attributes):
    network = networks.FullNetwork(node_attributes, [(1, 0), (2, 3)])

    assert network.edgelist().tolist() == [[0, 1], [2, 3]]
    assert network.graph.nodes[1] == {"active": 1, "race": 1}
    assert network.edgeSpells[(0, 1)] == [[-math.inf, math.inf]]
    assert network.time == 0
    assert network.stats.empty


def test_FullNetwork_applyToggles(node_attributes):
    network = networks.FullNetwork(node_attributes, [(0, 1), (2, 3)])

    network.applyToggles(np.array([[0, 2]]), np.array([[0, 1]]), at=1)
    network.applyToggles(np.array([[0, 1]]), np.array([[2, 3]]), at=2)

    assert network.edgelist().tolist() == [[0, 1], [0, 2]]
    assert network.time == 2
    assert network.edgeSpells[(0, 1)] == [[-math.inf, 1], [2, math.inf]]
    assert network.lastToggle() == {(0, 1): 2, (0, 2): 1, (2, 3): 2}


def test_FullNetwork_networkAt(node_attributes):
    network = networks.FullNetwork(node_attributes, [(0, 1), (2, 3)])
    network.applyToggles(np.array([[0, 2]]), np.array([[0, 1]]), at=1)
    network.applyToggles(np.empty((0, 2), dtype=int), np.array([[2, 3]]), at=2)

    assert sorted(network.networkAt(0).edges()) == [(0, 1), (2, 3)]
    assert sorted(network.networkAt(1).edges()) == [(0, 2), (2, 3)]
    assert sorted(network.networkAt(2).edges()) == [(0, 2)]
    assert network.networkAt(2).number_of_nodes() == 5


def test_FullNetwork_vertex_activity(node_attributes):
    network = networks.FullNetwork(node_attributes)
    network.activateVertices(onset=1)

    network.deactivateVertices(3, [4])

    assert network.isVertexActive(4, 2)
    assert not network.isVertexActive(4, 3)
    assert network.isVertexActive(0, 100)
    assert not network.isVertexActive(0, 0)


def test_FullNetwork_syncNodes(node_attributes):
    network = networks.FullNetwork(node_attributes)
    updated = pd.concat([node_attributes, pd.DataFrame({"active": [1], "race": [1]})], ignore_index=True)
    updated.loc[0, "active"] = 0

    network.syncNodes(updated)

    assert network.graph.number_of_nodes() == 6
    assert network.graph.nodes[0]["active"] == 0


def test_FullNetwork_appendStats(node_attributes):
    network = networks.FullNetwork(node_attributes)

    network.appendStats(pd.DataFrame([[1.0]], columns=["edges"]))
    network.appendStats(pd.DataFrame([[2.0]], columns=["edges"]))

    assert network.stats["edges"].tolist() == [1.0, 2.0]


def test_CompactNetwork_update_without_duration(node_attributes):
    network = networks.CompactNetwork([(0, 1)], node_attributes)

    network.update(np.array([[0, 2]]), np.array([[0, 2]]), np.array([[0, 1]]), at=3)

    assert not network.tracksDuration
    assert network.el.tolist() == [[0, 2]]
    assert network.time is None
    assert network.lasttoggle is None


def test_CompactNetwork_update_with_duration(node_attributes):
    network = networks.CompactNetwork([(0, 1), (2, 3)], node_attributes, time=1, lasttoggle={(0, 1): 1})

    network.update(np.array([[0, 1], [1, 2]]), np.array([[1, 2]]), np.array([[2, 3]]), at=2)

    assert network.time == 2
    assert network.lasttoggle == {(0, 1): 1, (1, 2): 2, (2, 3): 2}


@pytest.mark.parametrize("trackDuration", [True, False])
def test_compactFromFull(node_attributes, trackDuration):
    full = networks.FullNetwork(node_attributes, [(0, 1), (2, 3)])
    full.applyToggles(np.array([[1, 2]]), np.array([[2, 3]]), at=1)

    compact = networks.compactFromFull(full, node_attributes, trackDuration)

    assert compact.el.tolist() == [[0, 1], [1, 2]]
    assert compact.attributes is node_attributes
    if trackDuration:
        assert compact.time == 1
        assert compact.lasttoggle == {(1, 2): 1, (2, 3): 1}
    else:
        assert compact.time is None
        assert compact.lasttoggle is None
