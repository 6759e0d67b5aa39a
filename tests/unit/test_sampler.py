import numpy as np
import pandas as pd
import pytest

from dynamic_network_sim import sampler
from dynamic_network_sim.terms import bindFormula, degreeOf, toEdgelist


@pytest.fixture
def node_attributes():
    return pd.DataFrame({"active": [1] * 12, "race": [0, 1, 2] * 4})


@pytest.fixture
def fast():
    return sampler.MCMCControl(burnin=2000, interval=200)


def test_parseConstraints():
    assert sampler.parseConstraints("~bd(maxout=1)") == sampler.Constraints(maxDegree=1)
    assert sampler.parseConstraints(None) == sampler.Constraints()
    assert sampler.parseConstraints("~") == sampler.Constraints()


@pytest.mark.parametrize("constraints", ["~bd(maxout=-1)", "~bd(maxout=x)", "~edges"])
def test_parseConstraints_invalid(constraints):
    with pytest.raises(ValueError):
        sampler.parseConstraints(constraints)


def test_simulateErgm_sparse(node_attributes, fast):
    formula = bindFormula("edges", node_attributes)

    draws = sampler.simulateErgm(
        formula, [-50.0], [], np.ones(12, dtype=bool), np.random.default_rng(1), fast, nsim=3
    )

    assert len(draws.networks) == 3
    assert all(len(el) == 0 for el in draws.networks)
    assert draws.stats is None


def test_simulateErgm_bounded_degree(node_attributes, fast):
    formula = bindFormula("edges", node_attributes)

    draws = sampler.simulateErgm(
        formula,
        [50.0],
        [],
        np.ones(12, dtype=bool),
        np.random.default_rng(1),
        fast,
        sampler.Constraints(maxDegree=1),
    )

    degree = degreeOf(draws.networks[0], 12)
    assert degree.max() == 1
    # every node is matched once the chain has run long enough
    assert len(draws.networks[0]) == 6


def test_simulateErgm_only_active_nodes(node_attributes, fast):
    formula = bindFormula("edges", node_attributes)
    active = np.array([1, 0] * 6, dtype=bool)

    draws = sampler.simulateErgm(
        formula, [0.0], [(0, 1), (0, 2)], active, np.random.default_rng(1), fast
    )

    el = draws.networks[0]
    assert len(el) > 0
    assert np.all(active[el])


def test_simulateErgm_monitor_matches_summary(node_attributes, fast):
    formula = bindFormula("edges + nodematch(race)", node_attributes)
    monitor = bindFormula("edges + nodematch(race) + concurrent + degree(0:2)", node_attributes)
    active = np.ones(12, dtype=bool)

    draws = sampler.simulateErgm(
        formula, [-1.0, 0.5], [], active, np.random.default_rng(7), fast, nsim=4, monitor=monitor
    )

    assert list(draws.stats.columns) == monitor.names
    assert len(draws.stats) == 4
    for k, el in enumerate(draws.networks):
        assert draws.stats.iloc[k].tolist() == pytest.approx(monitor.summary(el, active).tolist())


def test_simulateErgm_reproducible(node_attributes, fast):
    formula = bindFormula("edges + nodematch(race)", node_attributes)
    active = np.ones(12, dtype=bool)

    first = sampler.simulateErgm(formula, [-1.0, 0.5], [], active, np.random.default_rng(5), fast, nsim=2)
    second = sampler.simulateErgm(formula, [-1.0, 0.5], [], active, np.random.default_rng(5), fast, nsim=2)

    for a, b in zip(first.networks, second.networks):
        assert a.tolist() == b.tolist()


@pytest.mark.parametrize("coef", [[-1.0], [-1.0, 0.5, 1.0], [np.nan, 0.5], [np.inf, 0.5]])
def test_simulateErgm_bad_coefficients(node_attributes, fast, coef):
    formula = bindFormula("edges + nodematch(race)", node_attributes)

    with pytest.raises(sampler.SamplerError):
        sampler.simulateErgm(formula, coef, [], np.ones(12, dtype=bool), np.random.default_rng(1), fast)


def test_simulateErgm_negative_infinite_coefficient(node_attributes, fast):
    formula = bindFormula("edges + nodematch(race)", node_attributes)

    draws = sampler.simulateErgm(
        formula, [0.0, -np.inf], [], np.ones(12, dtype=bool), np.random.default_rng(1), fast
    )

    el = draws.networks[0]
    assert len(el) > 0
    assert np.all(node_attributes.race.to_numpy()[el[:, 0]] != node_attributes.race.to_numpy()[el[:, 1]])


def test_simulateStergmStep_persistent_edges(node_attributes, fast):
    formation = bindFormula("edges", node_attributes)
    dissolution = bindFormula("offset(edges)", node_attributes)
    edgelist = toEdgelist([(0, 1), (2, 3), (4, 5)])

    step = sampler.simulateStergmStep(
        formation, [-50.0], dissolution, [50.0], edgelist, np.ones(12, dtype=bool), np.random.default_rng(1), fast
    )

    assert step.edgelist.tolist() == edgelist.tolist()
    assert len(step.formed) == 0
    assert len(step.dissolved) == 0
    assert step.stats is None


def test_simulateStergmStep_every_edge_dissolves(node_attributes, fast):
    formation = bindFormula("edges", node_attributes)
    dissolution = bindFormula("offset(edges)", node_attributes)
    edgelist = toEdgelist([(0, 1), (2, 3), (4, 5)])

    step = sampler.simulateStergmStep(
        formation, [-50.0], dissolution, [-50.0], edgelist, np.ones(12, dtype=bool), np.random.default_rng(1), fast
    )

    assert len(step.edgelist) == 0
    assert step.dissolved.tolist() == edgelist.tolist()


def test_simulateStergmStep_formed_edges_are_new(node_attributes, fast):
    formation = bindFormula("edges", node_attributes)
    dissolution = bindFormula("offset(edges)", node_attributes)
    monitor = bindFormula("edges + concurrent", node_attributes)
    edgelist = toEdgelist([(0, 1), (2, 3), (4, 5)])
    active = np.ones(12, dtype=bool)

    step = sampler.simulateStergmStep(
        formation, [0.0], dissolution, [2.0], edgelist, active, np.random.default_rng(3), fast, monitor=monitor
    )

    old = set(map(tuple, edgelist.tolist()))
    formed = set(map(tuple, step.formed.tolist()))
    dissolved = set(map(tuple, step.dissolved.tolist()))
    assert len(formed) > 0
    assert not formed & old
    assert dissolved <= old
    assert set(map(tuple, step.edgelist.tolist())) == (old - dissolved) | formed
    assert step.stats.tolist() == pytest.approx(monitor.summary(step.edgelist, active).tolist())


def test_simulateStergmStep_drops_inactive_edges(node_attributes, fast):
    formation = bindFormula("edges", node_attributes)
    dissolution = bindFormula("offset(edges)", node_attributes)
    active = np.ones(12, dtype=bool)
    active[0] = False

    step = sampler.simulateStergmStep(
        formation,
        [-50.0],
        dissolution,
        [50.0],
        toEdgelist([(0, 1), (2, 3)]),
        active,
        np.random.default_rng(1),
        fast,
    )

    assert step.edgelist.tolist() == [[2, 3]]
    assert len(step.dissolved) == 0


def test_simulateStergmStep_dyad_dependent_dissolution(node_attributes, fast):
    formation = bindFormula("edges", node_attributes)
    dissolution = bindFormula("edges + concurrent", node_attributes)

    with pytest.raises(sampler.SamplerError):
        sampler.simulateStergmStep(
            formation, [-1.0], dissolution, [1.0, 0.0], [], np.ones(12, dtype=bool), np.random.default_rng(1), fast
        )
