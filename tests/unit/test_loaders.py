import numpy as np
import pandas as pd
import pytest

from dynamic_network_sim import loaders
from dynamic_network_sim.context import Control
from dynamic_network_sim.sampler import MCMCControl


def test_readFormation(base_data_dir):
    formula, coef = loaders.readFormation(pd.read_csv(base_data_dir / "formation.csv"))

    assert formula == "edges + nodematch(race) + degree(0:1)"
    assert coef.tolist() == pytest.approx([-4.0, 0.6, 0.2, -0.3])


def test_readFormation_collapses_consecutive_rows_only():
    table = pd.DataFrame({"Term": ["edges", "concurrent", "edges"], "Coefficient": [-1.0, 0.5, 0.1]})

    formula, coef = loaders.readFormation(table)

    assert formula == "edges + concurrent + edges"
    assert coef.tolist() == [-1.0, 0.5, 0.1]


@pytest.mark.parametrize(
    "table",
    [
        pd.DataFrame({"Term": [], "Coefficient": []}),
        pd.DataFrame({"Term": ["edges"], "Value": [-1.0]}),
        pd.DataFrame({"Term": ["edges"], "Coefficient": [np.nan]}),
    ],
)
def test_readFormation_invalid(table):
    with pytest.raises(ValueError):
        loaders.readFormation(table)


def test_readDissolution(base_data_dir):
    formula, duration = loaders.readDissolution(pd.read_csv(base_data_dir / "dissolution.csv"))

    assert formula == "offset(edges)"
    assert duration.tolist() == [25.0]


def test_readDissolution_missing():
    assert loaders.readDissolution(None) == (None, None)


def test_readNodeAttributes(base_data_dir):
    attributes = loaders.readNodeAttributes(pd.read_csv(base_data_dir / "attributes.csv"))

    assert len(attributes) == 30
    assert set(attributes.columns) == {"active", "race", "age"}
    assert list(attributes.index) == list(range(30))


@pytest.mark.parametrize(
    "table",
    [
        pd.DataFrame({"race": [1, 2]}),
        pd.DataFrame({"active": [1, 2]}),
        pd.DataFrame({"active": [1, 1], "group": [1, 3]}),
        pd.DataFrame({"active": []}),
    ],
)
def test_readNodeAttributes_invalid(table):
    with pytest.raises(ValueError):
        loaders.readNodeAttributes(table)


def test_readControl(base_data_dir):
    control = loaders.readControl(pd.read_csv(base_data_dir / "control.csv"))

    assert control == Control(
        tergmLite=True,
        nwstatsFormula="~edges + concurrent",
        setControlErgm=MCMCControl(burnin=3000, interval=1000),
        setControlStergm=MCMCControl(burnin=500, interval=100),
    )


def test_readControl_defaults():
    assert loaders.readControl(None) == Control()


@pytest.mark.parametrize(
    "parameter,value",
    [("tergmLite", "maybe"), ("ergm.burnin", "-1"), ("ergm.burnin", "1.5"), ("unknown", "1")],
)
def test_readControl_invalid(parameter, value):
    with pytest.raises(ValueError):
        loaders.readControl(pd.DataFrame({"Parameter": [parameter], "Value": [value]}))


def test_readControl_repeated_parameter():
    with pytest.raises(ValueError):
        loaders.readControl(pd.DataFrame({"Parameter": ["tergmLite", "tergmLite"], "Value": ["true", "false"]}))


def test_readModelParameters(base_data_dir):
    parameters = loaders.readModelParameters(pd.read_csv(base_data_dir / "control.csv"))

    assert parameters == loaders.ModelParameters(groups=1, edapprox=True, constraints="~bd(maxout=3)")


def test_readModelParameters_defaults():
    assert loaders.readModelParameters(None) == loaders.ModelParameters()
    assert loaders.readModelParameters(
        pd.DataFrame({"Parameter": ["tergmLite"], "Value": ["true"]})
    ) == loaders.ModelParameters()


def test_readModelParameters_invalid_groups():
    with pytest.raises(ValueError):
        loaders.readModelParameters(pd.DataFrame({"Parameter": ["groups"], "Value": [3]}))


def test_readBasisEdges(base_data_dir):
    edges = loaders.readBasisEdges(pd.read_csv(base_data_dir / "basis_edges.csv"), 30)

    assert edges == [(0, 1), (2, 5), (10, 20)]


@pytest.mark.parametrize("source,target", [(0, 30), (3, 3), (-1, 2)])
def test_readBasisEdges_invalid(source, target):
    with pytest.raises(ValueError):
        loaders.readBasisEdges(pd.DataFrame({"source": [source], "target": [target]}), 30)


def test_genBasisGraph():
    attributes = pd.DataFrame({"active": [1, 1, 0], "race": [0, 1, 0]})

    graph = loaders.genBasisGraph(attributes, [(0, 2)])

    assert sorted(graph.nodes()) == [0, 1, 2]
    assert graph.nodes[1]["race"] == 1
    assert list(graph.edges()) == [(0, 2)]


def test_readRandomSeed(base_data_dir):
    assert loaders.readRandomSeed(pd.read_csv(base_data_dir / "random_seed.csv")) == 123
    assert loaders.readRandomSeed(None) == 0


@pytest.mark.parametrize(
    "table",
    [
        pd.DataFrame({"Value": [-1]}),
        pd.DataFrame({"Value": ["abc"]}),
        pd.DataFrame({"Value": [1, 2]}),
        pd.DataFrame({"Seed": [1]}),
    ],
)
def test_readRandomSeed_invalid(table):
    with pytest.raises(ValueError):
        loaders.readRandomSeed(table)
