"""
The fitted statistical network model consumed by the resimulation.

The model is made of a formation model, an optional dissolution model (for networks that evolve over time) and the
structural constraints. Fitting is done elsewhere: this module only builds the parameter object from the fitted
coefficients (see :meth:`createNetworkModel`) and derives the dissolution coefficients from the mean edge durations
(see :meth:`dissolutionCoefs`).

The first formation coefficient is always the density (edges) term. It is the only value that changes during a
simulation, when the resimulation corrects it for changes in the size of the active population.
"""
import logging
from typing import NamedTuple, Optional, Sequence, Union

import networkx as nx  # type: ignore
import numpy as np  # type: ignore

from dynamic_network_sim.networks import graphAttributes
from dynamic_network_sim.sampler import Constraints, parseConstraints
from dynamic_network_sim.terms import Formula, bindFormula, formulaToString, parseFormula

logger = logging.getLogger(__name__)


class DissolutionCoefs(NamedTuple):
    """
    Dissolution model and its coefficients. ``coefCrude`` is used for the initial draw, and ``coefAdj``, which is
    adjusted for the competing risk of nodes departing, for every step after that
    """
    dissolution: Formula
    duration: np.ndarray
    coefCrude: np.ndarray
    coefAdj: np.ndarray
    dRate: float = 0.0


class NetworkModel(NamedTuple):
    """
    This type has all the parameters of the network model. ``coefForm`` is modified in place by the edges correction
    """
    formation: Formula
    coefForm: np.ndarray
    coefDiss: Optional[DissolutionCoefs]
    constraints: Constraints
    basis: nx.Graph
    edapprox: bool = True
    coefFit: Optional[np.ndarray] = None


def dissolutionCoefs(
        dissolution: Union[str, Formula],
        duration: Union[float, Sequence[float]],
        dRate: float = 0.0,
) -> DissolutionCoefs:
    r"""Computes the dissolution coefficients from the mean edge durations.

    Two dissolution models are supported:

    1. ``offset(edges)`` -- every edge has the same mean duration :math:`d`, and the coefficient is
       :math:`\log(d - 1)`.
    2. ``offset(edges) + offset(nodematch(attr))`` -- edges between nodes with different values of the attribute last
       :math:`d_1` steps on average, and the ones between nodes with the same value last :math:`d_2`. The coefficients
       are :math:`\log(d_1 - 1)` and :math:`\log(d_2 - 1) - \log(d_1 - 1)`. :math:`d_1 = 1` with
       :math:`d_2 > 1` is rejected, since the second coefficient would be infinite.

    When nodes depart at rate :math:`\delta`, an edge also ends when one of its nodes departs. The adjusted
    coefficient compensates for that: with :math:`p_g = (d - 1) / d` and :math:`p_s = (1 - \delta)^2`, it is
    :math:`\log(p_g / (p_s - p_g))`.

    :param dissolution: the dissolution formula
    :param duration: mean duration of the edges, one per dissolution term
    :param dRate: departure rate of the nodes
    :return: the dissolution coefficients
    """
    dissolution = parseFormula(dissolution)
    duration = np.atleast_1d(np.asarray(duration, dtype=float))

    names = [spec.name for spec in dissolution]
    if names not in (["edges"], ["edges", "nodematch"]):
        raise ValueError(
            "The dissolution model must be offset(edges) or offset(edges) + offset(nodematch(attr)), "
            f"got {formulaToString(dissolution)}"
        )
    if len(duration) != len(dissolution):
        raise ValueError(f"Expected {len(dissolution)} durations, got {len(duration)}")
    if np.any(duration < 1) or np.any(np.isnan(duration)):
        raise ValueError(f"Durations must be at least 1, got {duration}")
    if len(duration) == 2 and duration[0] == 1 and duration[1] > 1:
        # log(d2 - 1) - log(d1 - 1) would be +inf
        raise ValueError(
            f"Edges between different nodes must last longer than 1 step when matching edges do, got {duration}"
        )
    if not 0.0 <= dRate < 1.0:
        raise ValueError(f"The departure rate must be in [0, 1), got {dRate}")

    with np.errstate(divide="ignore"):
        crude = np.log(duration - 1)
        if dRate > 0.0:
            pg = (duration - 1) / duration
            ps2 = (1 - dRate) ** 2
            if np.any(ps2 <= pg):
                raise ValueError("The departure rate is too high for the given durations")
            adjusted = np.log(pg / (ps2 - pg))
        else:
            adjusted = crude.copy()

    if len(duration) == 2:
        with np.errstate(invalid="ignore"):
            crude = np.array([crude[0], crude[1] - crude[0]])
            adjusted = np.array([adjusted[0], adjusted[1] - adjusted[0]])

    return DissolutionCoefs(
        dissolution=dissolution,
        duration=duration,
        coefCrude=crude,
        coefAdj=adjusted,
        dRate=dRate,
    )


def isTimeEvolving(coefDiss: Optional[DissolutionCoefs]) -> bool:
    """
    Whether the network evolves over time, as opposed to being redrawn independently at every step. A dissolution model
    where every duration is 1 describes edges lasting a single step, which is a cross-sectional network.
    """
    return coefDiss is not None and bool(np.any(coefDiss.duration > 1))


# pylint: disable=too-many-arguments
def createNetworkModel(
        formation: Union[str, Formula],
        coefFit: Sequence[float],
        basis: nx.Graph,
        dissolution: Union[str, Formula, None] = None,
        duration: Union[float, Sequence[float], None] = None,
        dRate: float = 0.0,
        constraints: Union[str, Formula, None] = None,
        edapprox: bool = True,
) -> NetworkModel:
    """Creates the network model from the fitted coefficients.

    When ``edapprox`` is set the fitted coefficients are those of the cross-sectional model, and the formation
    coefficients of a time-evolving model are approximated by subtracting the dissolution coefficients from the
    matching formation coefficients (edges, and nodematch if the dissolution model has it). The cross-sectional
    coefficients are kept in ``coefFit`` to draw the basis network.

    :param formation: formation formula. Its first term must be edges
    :param coefFit: fitted coefficients, one per statistic of the formation formula
    :param basis: graph with one node per individual (labelled 0..n-1) and their attributes, and the observed edges
    :param dissolution: dissolution formula, if any
    :param duration: mean durations of the dissolution terms
    :param dRate: departure rate of the nodes
    :param constraints: constraint formula, e.g. ``"~bd(maxout=1)"``
    :param edapprox: whether the basis is drawn from the cross-sectional model, instead of using the basis edges
    :return: the network model
    """
    formation = parseFormula(formation)
    if not formation or formation[0].name != "edges":
        raise ValueError("The first term of the formation formula must be edges")

    names = bindFormula(formation, graphAttributes(basis)).names
    coefFit = np.asarray(coefFit, dtype=float)
    if len(coefFit) != len(names):
        raise ValueError(f"Expected {len(names)} coefficients for {names}, got {len(coefFit)}")

    coefDiss = None
    if dissolution is not None:
        if duration is None:
            raise ValueError("A dissolution model needs a duration for each of its terms")
        coefDiss = dissolutionCoefs(dissolution, duration, dRate)

    coefForm = coefFit.copy()
    if edapprox and isTimeEvolving(coefDiss):
        offsets = [0]
        if len(coefDiss.dissolution) == 2:
            matching = f"nodematch.{coefDiss.dissolution[1].args[0]}"
            if matching not in names:
                raise ValueError(f"The formation formula needs {matching} to match the dissolution model")
            offsets.append(names.index(matching))
        for position, crude in zip(offsets, coefDiss.coefCrude):
            if np.isfinite(crude):
                coefForm[position] -= crude

    logger.info(
        "Formation: %s, coefficients: %s, dissolution: %s",
        formulaToString(formation),
        dict(zip(names, coefForm)),
        formulaToString(coefDiss.dissolution) if coefDiss is not None else None,
    )
    return NetworkModel(
        formation=formation,
        coefForm=coefForm,
        coefDiss=coefDiss,
        constraints=parseConstraints(constraints),
        basis=basis,
        edapprox=edapprox,
        coefFit=coefFit,
    )
