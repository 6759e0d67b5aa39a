"""
This module resimulates the contact network of an epidemic model at every time step.

The entrypoints are :meth:`simulateInitialNetwork`, which draws the network at the first step, and
:meth:`resimulateNetwork`, which is called at every step after that. Both take the `SimulationContext` of the run and
write the new network state and the network statistics back into it.

The kind of network is decided once, when the initial network is drawn:

1. Time-evolving (``isTERGM``) -- the model has a dissolution model with a mean duration longer than one step. Each
   step forms new edges and dissolves some of the existing ones, so the network at a step depends on the one before.
2. Cross-sectional -- each step is a new independent draw from the formation model. The previous network is only used
   as the starting point of the sampler.

And so is its representation: a `FullNetwork`, which keeps the whole history of the network, or, when ``tergmLite``
is set, a `CompactNetwork`, which only keeps the current edge list.

As nodes arrive and depart, the density coefficient of the formation model is corrected (:meth:`edgesCorrection`) so
that the mean degree of the active nodes stays the same.
"""
import logging
import math
from typing import NamedTuple, Optional, Sequence, Tuple

import numpy as np  # type: ignore
import pandas as pd  # type: ignore

from dynamic_network_sim.common import IssueSeverity, Lazy, log_issue
from dynamic_network_sim.context import SimulationContext
from dynamic_network_sim.model import isTimeEvolving
from dynamic_network_sim.networks import CompactNetwork, FullNetwork, compactFromFull, inactiveEdges
from dynamic_network_sim.nwstats import appendStats, statsRow
from dynamic_network_sim.sampler import SamplerError, simulateErgm, simulateStergmStep
from dynamic_network_sim.terms import BoundFormula, activeMask, bindFormula, parseFormula, toEdgelist

logger = logging.getLogger(__name__)


class NetworkSimulationError(RuntimeError):
    """
    Raised when the network of a step could not be simulated. Carries the details needed to diagnose the failure
    """

    def __init__(self, at: int, mode: str, coef: np.ndarray):
        self.at = at
        self.mode = mode
        self.coef = np.array(coef, copy=True)
        super().__init__(f"Network simulation failed at step {at} ({mode}), formation coefficients: {self.coef}")


class ModelTermInputs(NamedTuple):
    """
    The formulas of the model bound to the current node attributes. The monitor is the formation formula followed by
    the network statistics formula
    """
    formation: BoundFormula
    dissolution: Optional[BoundFormula]
    monitor: BoundFormula


def updateModelTermInputs(ctx: SimulationContext) -> ModelTermInputs:
    """Binds the model formulas to the current node attributes and stores them in the context.

    This has to happen at every step, since arrivals, departures and attribute changes all change the inputs of the
    terms.

    :param ctx: the simulation context
    :return: the bound formulas
    """
    nwparam = ctx.nwparam
    nwstatsFormula = ctx.getControlOption("nwstats.formula")
    if nwstatsFormula == "formation":
        nwstatsFormula = nwparam.formation
    ctx.terms = ModelTermInputs(
        formation=bindFormula(nwparam.formation, ctx.attributes),
        dissolution=(
            bindFormula(nwparam.coefDiss.dissolution, ctx.attributes) if nwparam.coefDiss is not None else None
        ),
        monitor=bindFormula(nwparam.formation + parseFormula(nwstatsFormula), ctx.attributes),
    )
    return ctx.terms


def simulationMode(ctx: SimulationContext) -> str:
    """Human readable description of the kind of simulation, used in errors and logs"""
    representation = "compact" if ctx.getControlOption("tergmLite") else "full"
    kind = "time-evolving" if ctx.getControlOption("isTERGM") else "cross-sectional"
    return f"{representation}/{kind}"


def simulateInitialNetwork(ctx: SimulationContext, nsteps: int = 1) -> SimulationContext:
    """Draws the network at the first time step.

    For time-evolving networks, a basis network is drawn from the cross-sectional model (or taken from the model when
    ``edapprox`` is not set) and then simulated over ``nsteps`` time steps. For cross-sectional networks, ``nsteps``
    independent networks are drawn. The first one becomes the network of the run and all of them are kept in
    ``ctx.temp["nw_list"]``.

    :param ctx: the simulation context. Its control options ``isTERGM`` and ``nwstats.formula`` are set here
    :param nsteps: number of time steps (time-evolving) or of independent networks (cross-sectional)
    :return: the simulation context, with the network state and, if enabled, the network statistics
    """
    if nsteps < 1:
        raise ValueError("nsteps must be at least 1")
    nwparam = ctx.nwparam
    if nwparam.basis.number_of_nodes() != len(ctx.attributes):
        raise ValueError(
            f"The basis network has {nwparam.basis.number_of_nodes()} nodes but there are {len(ctx.attributes)} "
            "rows in the attribute table"
        )

    isTergm = isTimeEvolving(nwparam.coefDiss)
    ctx.setControlOption("isTERGM", isTergm)
    if ctx.getControlOption("nwstats.formula") == "formation":
        ctx.setControlOption("nwstats.formula", nwparam.formation)
    else:
        ctx.setControlOption("nwstats.formula", parseFormula(ctx.getControlOption("nwstats.formula")))

    terms = updateModelTermInputs(ctx)
    active = activeMask(ctx.attributes)
    basis = toEdgelist(nwparam.basis.edges())
    logger.info("Drawing the initial network (%s, %s step(s))", simulationMode(ctx), nsteps)

    try:
        if isTergm:
            if nwparam.edapprox:
                basis = simulateErgm(
                    terms.formation,
                    nwparam.coefFit,
                    basis,
                    active,
                    ctx.generator,
                    ctx.control.setControlErgm,
                    nwparam.constraints,
                ).networks[0]
            network = FullNetwork(ctx.attributes, basis)
            for at in range(1, nsteps + 1):
                _simulateTimeSlice(ctx, network, terms, nwparam.coefDiss.coefCrude, at, active)
            network.activateVertices(onset=1, terminus=math.inf)
            ctx.network = network
        else:
            draws = simulateErgm(
                terms.formation,
                nwparam.coefForm,
                basis,
                active,
                ctx.generator,
                ctx.control.setControlErgm,
                nwparam.constraints,
                nsim=nsteps,
                monitor=terms.monitor,
            )
            networks = [
                FullNetwork(ctx.attributes, el, stats=draws.stats.iloc[[k]].reset_index(drop=True), time=1)
                for k, el in enumerate(draws.networks)
            ]
            ctx.network = networks[0]
            ctx.temp["nw_list"] = networks
    except SamplerError as err:
        logger.error("Could not draw the initial network: %s", err)
        raise NetworkSimulationError(1, simulationMode(ctx), nwparam.coefForm) from err

    if ctx.getControlOption("save.nwstats"):
        if not isTergm and nsteps > 1:
            stats = draws.stats
        else:
            stats = ctx.network.stats
        ctx.nwstats = appendStats(None, stats)

    logger.info("Initial network: %s edges", ctx.network.graph.number_of_edges())
    if ctx.getControlOption("tergmLite"):
        ctx.network = compactFromFull(ctx.network, ctx.attributes, ctx.getControlOption("tergmLite.track.duration"))
    return ctx


def _simulateTimeSlice(
        ctx: SimulationContext,
        network: FullNetwork,
        terms: ModelTermInputs,
        coefDiss: np.ndarray,
        at: int,
        active: np.ndarray,
) -> pd.DataFrame:
    """Advances the full network by one time step, recording the monitored statistics in its trace"""
    edgelist = network.edgelist()
    step = simulateStergmStep(
        terms.formation,
        ctx.nwparam.coefForm,
        terms.dissolution,
        coefDiss,
        edgelist,
        active,
        ctx.generator,
        ctx.control.setControlStergm,
        ctx.nwparam.constraints,
        monitor=terms.monitor,
    )
    dissolved = np.concatenate([step.dissolved, inactiveEdges(edgelist, active)])
    network.applyToggles(step.formed, dissolved, at)
    row = statsRow(step.stats, terms.monitor.names)
    network.appendStats(row)
    return row


def anyActiveNodes(active: Sequence[int], group: Optional[Sequence[int]] = None) -> bool:
    """Whether there are nodes to build a network with.

    For two-group models (when group is given) there must be active nodes in both groups, since there can't be a
    network with one of its sides empty.

    >>> anyActiveNodes([1, 0, 1, 0])
    True
    >>> anyActiveNodes([1, 1, 0, 0], group=[1, 1, 2, 2])
    False

    :param active: activity indicator of every node
    :param group: group (1 or 2) of every node, for two-group models
    :return: whether the network can be resimulated
    """
    active = np.asarray(active) == 1
    if group is None:
        return bool(np.any(active))
    group = np.asarray(group)
    return bool(np.any(active & (group == 1)) and np.any(active & (group == 2)))


def resimulateNetwork(ctx: SimulationContext, at: int) -> SimulationContext:
    """Resimulates the network at time step ``at`` (2 or later).

    The density coefficient is corrected first (see :meth:`edgesCorrection`). If resimulation is disabled, or there
    are no active nodes (in either group, for two-group models), the network is left unchanged for this step and no
    statistics are recorded.

    :param ctx: the simulation context, after :meth:`simulateInitialNetwork`
    :param at: the current time step
    :return: the simulation context with the network of step ``at``
    """
    if ctx.getControlOption("isTERGM") is None or ctx.network is None:
        raise ValueError("The initial network must be simulated before resimulating it")

    ctx = edgesCorrection(ctx, at)

    active = ctx.getAttribute("active")
    group = ctx.getAttribute("group") if ctx.getParamOption("groups") == 2 else None
    if not ctx.getControlOption("resimulate.network"):
        return ctx
    if not anyActiveNodes(active, group):
        logger.info("Step %s: no active nodes to build a network with, keeping the previous network", at)
        return ctx

    active = np.asarray(active) == 1
    try:
        if isinstance(ctx.network, FullNetwork):
            row = _resimulateFull(ctx, ctx.network, at, active)
        elif isinstance(ctx.network, CompactNetwork):
            row = _resimulateCompact(ctx, ctx.network, at, active)
        else:
            raise TypeError(f"Unknown network state {type(ctx.network)}")
    except SamplerError as err:
        logger.error("Could not simulate the network at step %s: %s", at, err)
        raise NetworkSimulationError(at, simulationMode(ctx), ctx.nwparam.coefForm) from err

    if ctx.getControlOption("save.nwstats"):
        ctx.nwstats = appendStats(ctx.nwstats, row)
        logger.debug("Step %s statistics: %s", at, Lazy(lambda: ctx.nwstats.iloc[-1].to_dict()))
    return ctx


def _resimulateFull(ctx: SimulationContext, network: FullNetwork, at: int, active: np.ndarray) -> pd.DataFrame:
    terms = updateModelTermInputs(ctx)
    nwparam = ctx.nwparam
    network.syncNodes(ctx.attributes)

    if ctx.getControlOption("isTERGM"):
        network.deactivateVertices(at, [
            vertex for vertex in np.flatnonzero(~active).tolist() if network.isVertexActive(vertex, at)
        ])
        row = _simulateTimeSlice(ctx, network, terms, nwparam.coefDiss.coefAdj, at, active)
        return row.tail(1)

    draws = simulateErgm(
        terms.formation,
        nwparam.coefForm,
        network.edgelist(),
        active,
        ctx.generator,
        ctx.control.setControlErgm,
        nwparam.constraints,
        monitor=terms.monitor,
    )
    ctx.network = FullNetwork(ctx.attributes, draws.networks[0], stats=draws.stats, time=at)
    return draws.stats.tail(1)


def _resimulateCompact(ctx: SimulationContext, network: CompactNetwork, at: int, active: np.ndarray) -> pd.DataFrame:
    terms = updateModelTermInputs(ctx)
    nwparam = ctx.nwparam
    network.attributes = ctx.attributes

    if ctx.getControlOption("isTERGM"):
        step = simulateStergmStep(
            terms.formation,
            nwparam.coefForm,
            terms.dissolution,
            nwparam.coefDiss.coefAdj,
            network.el,
            active,
            ctx.generator,
            ctx.control.setControlStergm,
            nwparam.constraints,
        )
        dissolved = np.concatenate([step.dissolved, inactiveEdges(network.el, active)])
        network.update(step.edgelist, step.formed, dissolved, at)
    else:
        draws = simulateErgm(
            terms.formation,
            nwparam.coefForm,
            network.el,
            active,
            ctx.generator,
            ctx.control.setControlErgm,
            nwparam.constraints,
        )
        network.el = draws.networks[0]

    return statsRow(terms.monitor.summary(network.el, active), terms.monitor.names)


def densityOffset(counts: Tuple[float, ...]) -> float:
    r"""Log of the population size the density coefficient scales with.

    For one group this is :math:`\log(n)`. For two groups, where edges only form across groups, it is the log of
    :math:`2 n_1 n_2 / (n_1 + n_2)`.

    :param counts: the number of active nodes, one value per group
    :return: the offset
    """
    if len(counts) == 1:
        return math.log(counts[0])
    n1, n2 = counts
    return math.log(2 * n1 * n2 / (n1 + n2))


def _validCounts(counts: Tuple[float, ...]) -> bool:
    return all(count is not None and math.isfinite(count) and count > 0 for count in counts)


def edgesCorrection(ctx: SimulationContext, at: int) -> SimulationContext:
    """Adjusts the density coefficient for the change in the size of the active population.

    The coefficient moves by the difference between the density offsets (see :meth:`densityOffset`) of the previous
    and the current step, which keeps the mean degree of the active nodes constant. The previous counts come from the
    ``num`` (and ``num.g2``) epidemic series at step ``at - 1``. Corrections accumulate from step to step.

    If any count is zero or invalid, the correction is skipped for this step and an issue is recorded.

    :param ctx: the simulation context. The first formation coefficient is modified in place
    :param at: the current time step
    :return: the simulation context
    """
    if not ctx.getControlOption("resimulate.network"):
        return ctx

    active = ctx.getAttribute("active") == 1
    if ctx.getParamOption("groups") == 2:
        group = ctx.getAttribute("group")
        oldCounts: Tuple[float, ...] = (
            ctx.getEpidemicSeries("num", at - 1),
            ctx.getEpidemicSeries("num.g2", at - 1),
        )
        newCounts: Tuple[float, ...] = (
            int(np.sum(active & (group == 1))),
            int(np.sum(active & (group == 2))),
        )
    else:
        oldCounts = (ctx.getEpidemicSeries("num", at - 1),)
        newCounts = (int(np.sum(active)),)

    if not (_validCounts(oldCounts) and _validCounts(newCounts)):
        log_issue(
            logger,
            f"Step {at}: skipping the edges correction, active counts went from {oldCounts} to {newCounts}",
            IssueSeverity.MEDIUM,
            ctx.issues,
        )
        return ctx

    coefForm = ctx.nwparam.coefForm
    coefForm[0] += densityOffset(oldCounts) - densityOffset(newCounts)
    logger.debug("Step %s: active %s -> %s, edges coefficient %s", at, oldCounts, newCounts, coefForm[0])
    return ctx
