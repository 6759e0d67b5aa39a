"""
Samplers for the statistical network model.

Two samplers are implemented here, both working on canonical edge lists (see :meth:`terms.toEdgelist`):

1. :meth:`simulateErgm` -- cross-sectional draws. A Metropolis-Hastings chain toggles random dyads between active nodes,
   starting from a basis network, and targets the formation model.
2. :meth:`simulateStergmStep` -- one discrete time step of a separable time-evolving model. Edges are formed by a
   Metropolis-Hastings chain restricted to the dyads which are not edges yet, and edges are dissolved independently,
   each persisting with probability :math:`\\text{expit}(\\theta_{diss} \\cdot \\Delta)`.

When a monitor formula is given, both samplers keep the monitor's statistics up to date while they toggle dyads, so
the statistics of the drawn networks come out as a byproduct of the draw.
"""
import logging
import math
from typing import List, NamedTuple, Optional, Set, Union

import numpy as np  # type: ignore
import pandas as pd  # type: ignore
from scipy.special import expit  # type: ignore

from dynamic_network_sim.common import Lazy
from dynamic_network_sim.terms import BoundFormula, Edge, Formula, degreeOf, parseFormula, toEdgelist

logger = logging.getLogger(__name__)


class SamplerError(RuntimeError):
    """
    Raised when the sampler can't produce a valid draw
    """


class MCMCControl(NamedTuple):
    """
    Tuning of the Metropolis-Hastings chains. ``burnin`` is the number of proposals before the first draw (or the
    number of formation proposals in a time step) and ``interval`` the number of proposals between successive draws
    """
    burnin: int = 10000
    interval: int = 1000


class Constraints(NamedTuple):
    """
    Structural restrictions on the networks that can be drawn. ``maxDegree`` is the largest degree allowed for any node
    """
    maxDegree: Optional[int] = None


CONSTRAINTS = {"bd"}


def parseConstraints(constraints: Union[str, Formula, None]) -> Constraints:
    """Parse a constraints formula such as ``"~bd(maxout=1)"``

    :param constraints: the constraint formula. None or an empty formula means no constraints
    :return: the constraints
    """
    if constraints is None:
        return Constraints()
    maxDegree = None
    for spec in parseFormula(constraints, known=CONSTRAINTS):
        maxDegree = spec.kwarg("maxout", spec.args[0] if spec.args else None)
        if not isinstance(maxDegree, int) or maxDegree < 0:
            raise ValueError(f"bd needs a non-negative integer maxout, got {maxDegree!r}")
    return Constraints(maxDegree=maxDegree)


class ErgmDraws(NamedTuple):
    """
    Networks drawn by :meth:`simulateErgm`. ``stats`` has one row per draw, with the statistics of the model formula
    followed by those of the monitor formula (names may repeat), or is None when no monitor was given
    """
    networks: List[np.ndarray]
    stats: Optional[pd.DataFrame]


class StergmStep(NamedTuple):
    """
    The result of one time step. ``stats`` holds the monitor statistics of the new network, or None when no monitor was
    given
    """
    edgelist: np.ndarray
    formed: np.ndarray
    dissolved: np.ndarray
    stats: Optional[np.ndarray]


class _ToggleChain:
    """
    Edge set and node degrees of a network which is being toggled, with the running statistics of the monitor formula
    """

    def __init__(self, el: np.ndarray, n: int, active: np.ndarray, monitor: Optional[BoundFormula] = None):
        self.edges: Set[Edge] = set(map(tuple, el.tolist()))
        self.degree = degreeOf(el, n)
        self.monitor = monitor
        self.stats = monitor.summary(el, active) if monitor is not None else None

    def toggle(self, i: int, j: int):
        present = (i, j) in self.edges
        if self.monitor is not None:
            self.stats = self.stats + self.monitor.change(i, j, self.degree, present)
        if present:
            self.edges.remove((i, j))
            self.degree[i] -= 1
            self.degree[j] -= 1
        else:
            self.edges.add((i, j))
            self.degree[i] += 1
            self.degree[j] += 1

    def edgelist(self) -> np.ndarray:
        return toEdgelist(self.edges)


def _checkCoefficients(formula: BoundFormula, coef: np.ndarray):
    if len(coef) != len(formula):
        raise SamplerError(
            f"Expected {len(formula)} coefficients for {formula.names}, got {len(coef)}"
        )
    if np.any(np.isnan(coef)) or np.any(np.isposinf(coef)):
        raise SamplerError(f"Coefficients must be finite or -inf, got {coef}")


def _checkStatistics(stats: np.ndarray, names: List[str]):
    if not np.all(np.isfinite(stats)):
        raise SamplerError(f"Non finite network statistics {dict(zip(names, stats))}")


def _logRatio(coef: np.ndarray, delta: np.ndarray) -> float:
    # Terms that do not change must not contribute, even when their coefficient is -inf
    nonzero = delta != 0
    value = float(np.dot(coef[nonzero], delta[nonzero]))
    return -math.inf if math.isnan(value) else value


def restrictToNodes(el: np.ndarray, nodes: np.ndarray) -> np.ndarray:
    """Edges of el with both ends in the boolean node mask"""
    if len(el) == 0:
        return el
    return el[nodes[el[:, 0]] & nodes[el[:, 1]]]


# pylint: disable=too-many-arguments
def _metropolisHastings(
        chain: _ToggleChain,
        formula: BoundFormula,
        coef: np.ndarray,
        nodes: List[int],
        proposals: int,
        generator: np.random.Generator,
        constraints: Constraints,
        fixed: Optional[Set[Edge]] = None,
) -> int:
    """
    Runs the chain for a number of proposals. Each proposal toggles a random dyad between the given nodes. Dyads in
    ``fixed`` and additions breaking the constraints are rejected

    :return: number of accepted proposals
    """
    if len(nodes) < 2 or proposals <= 0:
        return 0
    picks = generator.integers(0, len(nodes), size=(proposals, 2)).tolist()
    uniforms = generator.random(proposals).tolist()
    maxDegree = constraints.maxDegree

    accepted = 0
    for (a, b), u in zip(picks, uniforms):
        if a == b:
            continue
        i, j = (nodes[a], nodes[b]) if nodes[a] < nodes[b] else (nodes[b], nodes[a])
        if fixed is not None and (i, j) in fixed:
            continue
        present = (i, j) in chain.edges
        if not present and maxDegree is not None and \
                (chain.degree[i] >= maxDegree or chain.degree[j] >= maxDegree):
            continue
        logRatio = _logRatio(coef, formula.change(i, j, chain.degree, present))
        if logRatio >= 0.0 or u < math.exp(logRatio):
            chain.toggle(i, j)
            accepted += 1
    return accepted


# pylint: disable=too-many-arguments
def simulateErgm(
        formula: BoundFormula,
        coef: np.ndarray,
        basis: np.ndarray,
        active: np.ndarray,
        generator: np.random.Generator,
        control: MCMCControl = MCMCControl(),
        constraints: Constraints = Constraints(),
        nsim: int = 1,
        monitor: Optional[BoundFormula] = None,
) -> ErgmDraws:
    """Draw networks from the cross-sectional model.

    The chain starts from the basis network (restricted to the active nodes) and only ever toggles dyads between
    active nodes. The first draw is taken after ``control.burnin`` proposals, and each further draw after another
    ``control.interval`` proposals.

    :param formula: the model formula, bound to the node attributes
    :param coef: the model coefficients, one per statistic of the formula
    :param basis: edge list the chain starts from
    :param active: boolean mask of active nodes
    :param generator: random number generator for the run
    :param control: tuning of the chain
    :param constraints: structural restrictions on the drawn networks
    :param nsim: number of networks to draw
    :param monitor: formula whose statistics are recorded for every draw
    :return: the drawn networks and, if requested, their statistics
    """
    coef = np.asarray(coef, dtype=float)
    _checkCoefficients(formula, coef)
    active = np.asarray(active, dtype=bool)
    if nsim < 1:
        raise ValueError("nsim must be at least 1")

    nodes = np.flatnonzero(active).tolist()
    chain = _ToggleChain(restrictToNodes(toEdgelist(basis), active), formula.n, active, monitor)

    networks = []
    rows = []
    for draw in range(nsim):
        proposals = control.burnin if draw == 0 else control.interval
        accepted = _metropolisHastings(chain, formula, coef, nodes, proposals, generator, constraints)
        logger.debug("Draw %s/%s: accepted %s/%s proposals", draw + 1, nsim, accepted, proposals)
        networks.append(chain.edgelist())
        if monitor is not None:
            _checkStatistics(chain.stats, monitor.names)
            rows.append(chain.stats.copy())

    stats = None
    if monitor is not None:
        stats = pd.DataFrame(np.array(rows).reshape(nsim, len(monitor)), columns=monitor.names)
    return ErgmDraws(networks=networks, stats=stats)


# pylint: disable=too-many-arguments
# pylint: disable=too-many-locals
def simulateStergmStep(
        formation: BoundFormula,
        coefForm: np.ndarray,
        dissolution: BoundFormula,
        coefDiss: np.ndarray,
        edgelist: np.ndarray,
        active: np.ndarray,
        generator: np.random.Generator,
        control: MCMCControl = MCMCControl(),
        constraints: Constraints = Constraints(),
        monitor: Optional[BoundFormula] = None,
) -> StergmStep:
    """Simulate one time step of a separable time-evolving network.

    Edges with an inactive end are dropped before the step, they are neither in the new network nor reported as
    dissolved. The dissolution model must be dyad independent, since each edge is dissolved on its own.

    :param formation: the formation formula, bound to the node attributes
    :param coefForm: the formation coefficients
    :param dissolution: the dissolution formula, bound to the node attributes
    :param coefDiss: the dissolution coefficients
    :param edgelist: the network at the previous time step
    :param active: boolean mask of active nodes
    :param generator: random number generator for the run
    :param control: ``control.burnin`` is the number of formation proposals in the step
    :param constraints: structural restrictions on the formation network
    :param monitor: formula whose statistics are computed for the new network
    :return: the new network, the edges formed and dissolved, and the monitor statistics
    """
    coefForm = np.asarray(coefForm, dtype=float)
    coefDiss = np.asarray(coefDiss, dtype=float)
    _checkCoefficients(formation, coefForm)
    _checkCoefficients(dissolution, coefDiss)
    active = np.asarray(active, dtype=bool)
    if not dissolution.dyadIndependent:
        raise SamplerError("Only dyad independent dissolution models are supported")

    current = restrictToNodes(toEdgelist(edgelist), active)
    currentEdges = set(map(tuple, current.tolist()))

    # dissolution: every edge persists independently of the others
    if len(current):
        degree = degreeOf(current, formation.n)
        logits = np.array([
            _logRatio(coefDiss, dissolution.change(i, j, degree, False)) for i, j in current.tolist()
        ])
        persists = generator.random(len(current)) < expit(logits)
        dissolved = current[~persists]
    else:
        dissolved = current

    # formation: only dyads which are not edges yet may be toggled
    formationChain = _ToggleChain(current, formation.n, active)
    _metropolisHastings(
        formationChain,
        formation,
        coefForm,
        np.flatnonzero(active).tolist(),
        control.burnin,
        generator,
        constraints,
        fixed=currentEdges,
    )
    formed = toEdgelist(formationChain.edges - currentEdges)

    chain = _ToggleChain(current, formation.n, active, monitor)
    for i, j in dissolved.tolist() + formed.tolist():
        chain.toggle(i, j)
    if monitor is not None:
        _checkStatistics(chain.stats, monitor.names)

    logger.debug(
        "Step: %s edges, %s formed, %s dissolved",
        Lazy(lambda: len(chain.edges)),
        len(formed),
        len(dissolved),
    )
    return StergmStep(edgelist=chain.edgelist(), formed=formed, dissolved=dissolved, stats=chain.stats)
