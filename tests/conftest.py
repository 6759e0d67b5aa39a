from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from dynamic_network_sim.context import Control, SimulationContext
from dynamic_network_sim.loaders import genBasisGraph
from dynamic_network_sim.model import createNetworkModel
from dynamic_network_sim.sampler import MCMCControl

# Path to directory containing test files for fixtures
FIXTURE_DIR = Path(__file__).parents[0] / "test_data"


@pytest.fixture
def base_data_dir():
    yield FIXTURE_DIR / "model_inputs"


@pytest.fixture
def generator():
    return np.random.default_rng(42)


@pytest.fixture
def attributes():
    return pd.DataFrame({
        "active": [1] * 20,
        "race": [0, 1] * 10,
        "age": list(range(20, 40)),
    })


@pytest.fixture
def two_group_attributes():
    return pd.DataFrame({
        "active": [1] * 20,
        "group": [1] * 10 + [2] * 10,
    })


@pytest.fixture
def control():
    return Control(
        setControlErgm=MCMCControl(burnin=500, interval=50),
        setControlStergm=MCMCControl(burnin=200, interval=10),
    )


@pytest.fixture
def basis(attributes):  # pylint: disable=redefined-outer-name
    return genBasisGraph(attributes, [(0, 1), (2, 3), (4, 5)])


@pytest.fixture
def tergm_model(basis):  # pylint: disable=redefined-outer-name
    return createNetworkModel(
        "edges + nodematch(race) + concurrent",
        [-3.0, 0.5, -0.5],
        basis,
        dissolution="offset(edges)",
        duration=10,
    )


@pytest.fixture
def ergm_model(basis):  # pylint: disable=redefined-outer-name
    return createNetworkModel("edges + nodematch(race)", [-2.5, 0.5], basis)


@pytest.fixture
def make_context(attributes, control):  # pylint: disable=redefined-outer-name
    def make(nwparam, seed=42, **options):
        ctx = SimulationContext(nwparam, control, attributes, np.random.default_rng(seed))
        for name, value in options.items():
            ctx.setControlOption(name, value)
        return ctx
    return make

