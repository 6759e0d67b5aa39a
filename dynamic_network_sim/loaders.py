"""This module contains functions to read and check the input tables of the network resimulation."""

import math
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

import networkx as nx  # type: ignore
import numpy as np  # type: ignore
import pandas as pd  # type: ignore

from dynamic_network_sim.context import Control
from dynamic_network_sim.sampler import MCMCControl

_TRUE = {"true", "t", "yes", "1"}
_FALSE = {"false", "f", "no", "0"}

CONTROL_PARAMETERS = {
    "resimulate.network",
    "tergmLite",
    "save.nwstats",
    "nwstats.formula",
    "tergmLite.track.duration",
    "ergm.burnin",
    "ergm.interval",
    "stergm.burnin",
    "stergm.interval",
}
MODEL_PARAMETERS = {"groups", "edapprox", "constraints"}


class ModelParameters(NamedTuple):
    """
    Parameters of the network model which are not coefficients
    """
    groups: int = 1
    edapprox: bool = True
    constraints: Optional[str] = None


def _checkColumns(table: pd.DataFrame, columns: List[str], name: str):
    missing = [column for column in columns if column not in table.columns]
    if missing:
        raise ValueError(f"The {name} table is missing the columns {missing}")


def _parseBool(value: Any) -> bool:
    if isinstance(value, (bool, np.bool_)):
        return bool(value)
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


def _parseCount(value: Any, name: str) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{name} must be an int, got {value!r}") from None
    if not number.is_integer() or number < 0:
        raise ValueError(f"{name} must be a non-negative int, got {value!r}")
    return int(number)


def _collapseTerms(table: pd.DataFrame, valueColumn: str) -> Tuple[List[str], List[float]]:
    terms: List[str] = []
    values: List[float] = []
    previous = None
    for row in table.to_dict(orient="records"):
        term = str(row["Term"]).strip()
        value = float(row[valueColumn])
        if math.isnan(value):
            raise ValueError(f"Missing {valueColumn} for term {term}")
        if term != previous:
            terms.append(term)
        values.append(value)
        previous = term
    return terms, values


def readFormation(table: pd.DataFrame) -> Tuple[str, np.ndarray]:
    """Read the formation model and its fitted coefficients.

    There is one row per coefficient. Terms with more than one statistic (e.g. ``degree(0:2)``) are repeated on
    consecutive rows, once per statistic.

    :param table: formation data, with the columns Term and Coefficient
    :return: the formation formula and its coefficients
    """
    _checkColumns(table, ["Term", "Coefficient"], "formation")
    if table.empty:
        raise ValueError("The formation table is empty")
    terms, coefficients = _collapseTerms(table, "Coefficient")
    return " + ".join(terms), np.array(coefficients)


def readDissolution(table: Optional[pd.DataFrame]) -> Tuple[Optional[str], Optional[np.ndarray]]:
    """Read the dissolution model and the mean duration of the edges for each of its terms.

    :param table: dissolution data, with the columns Term and Duration. None for models without dissolution
    :return: the dissolution formula and the durations, or None for both
    """
    if table is None or table.empty:
        return None, None
    _checkColumns(table, ["Term", "Duration"], "dissolution")
    terms, durations = _collapseTerms(table, "Duration")
    if len(terms) != len(durations):
        raise ValueError("Every dissolution term must have exactly one duration")
    return " + ".join(terms), np.array(durations)


def readNodeAttributes(table: pd.DataFrame) -> pd.DataFrame:
    """Read the node attributes. Each row is a node, and node ids are the row positions.

    :param table: node attribute data. Must have an ``active`` column with values 0 or 1, and may have a ``group``
                  column with values 1 or 2
    :return: the attribute table, indexed by node id
    """
    _checkColumns(table, ["active"], "node attributes")
    table = table.reset_index(drop=True)
    if table.empty:
        raise ValueError("The node attributes table is empty")
    if not table["active"].isin([0, 1]).all():
        raise ValueError("active must be 0 or 1")
    if "group" in table.columns and not table["group"].isin([1, 2]).all():
        raise ValueError("group must be 1 or 2")
    return table


def _readParameters(table: pd.DataFrame) -> Dict[str, Any]:
    _checkColumns(table, ["Parameter", "Value"], "control")
    parameters: Dict[str, Any] = {}
    for row in table.to_dict(orient="records"):
        name = str(row["Parameter"]).strip()
        if name not in CONTROL_PARAMETERS | MODEL_PARAMETERS:
            raise ValueError(f"Unknown parameter: {name}")
        if name in parameters:
            raise ValueError(f"Parameter {name} is given more than once")
        parameters[name] = row["Value"]
    return parameters


def readControl(table: Optional[pd.DataFrame]) -> Control:
    """
    Read the control options of the network resimulation. Missing options take their default values

    :param table: control data, with the columns Parameter and Value
    :return: the control options
    """
    control = Control()
    if table is None:
        return control
    parameters = _readParameters(table)

    for name, field in [
        ("resimulate.network", "resimulateNetwork"),
        ("tergmLite", "tergmLite"),
        ("save.nwstats", "saveNwstats"),
        ("tergmLite.track.duration", "tergmLiteTrackDuration"),
    ]:
        if name in parameters:
            control = control._replace(**{field: _parseBool(parameters[name])})
    if "nwstats.formula" in parameters:
        control = control._replace(nwstatsFormula=str(parameters["nwstats.formula"]).strip())

    for prefix, field in [("ergm", "setControlErgm"), ("stergm", "setControlStergm")]:
        mcmc: MCMCControl = getattr(control, field)
        if f"{prefix}.burnin" in parameters:
            mcmc = mcmc._replace(burnin=_parseCount(parameters[f"{prefix}.burnin"], f"{prefix}.burnin"))
        if f"{prefix}.interval" in parameters:
            mcmc = mcmc._replace(interval=_parseCount(parameters[f"{prefix}.interval"], f"{prefix}.interval"))
        control = control._replace(**{field: mcmc})
    return control


def readModelParameters(table: Optional[pd.DataFrame]) -> ModelParameters:
    """
    Read the parameters of the network model from the control table

    :param table: control data, with the columns Parameter and Value
    :return: the model parameters
    """
    if table is None:
        return ModelParameters()
    parameters = _readParameters(table)

    groups = _parseCount(parameters.get("groups", 1), "groups")
    if groups not in (1, 2):
        raise ValueError(f"groups must be 1 or 2, got {groups}")
    constraints = parameters.get("constraints")
    if constraints is not None and (isinstance(constraints, float) and math.isnan(constraints)):
        constraints = None
    return ModelParameters(
        groups=groups,
        edapprox=_parseBool(parameters.get("edapprox", True)),
        constraints=str(constraints).strip() if constraints is not None else None,
    )


def readBasisEdges(table: Optional[pd.DataFrame], nodes: int) -> List[Tuple[int, int]]:
    """Read the observed edges of the basis network

    :param table: edge data, with the columns source and target. None for a network with no edges
    :param nodes: number of nodes of the network
    :return: list of edges
    """
    if table is None:
        return []
    _checkColumns(table, ["source", "target"], "basis edges")
    edges = []
    for row in table.to_dict(orient="records"):
        source, target = _parseCount(row["source"], "source"), _parseCount(row["target"], "target")
        if source >= nodes or target >= nodes:
            raise ValueError(f"Edge {source}-{target} refers to a node outside of 0..{nodes - 1}")
        if source == target:
            raise ValueError(f"Self loop at node {source}")
        edges.append((source, target))
    return edges


def genBasisGraph(attributes: pd.DataFrame, edges: List[Tuple[int, int]]) -> nx.Graph:
    """Builds the basis network: one node per row of the attribute table, carrying its attributes, and the edges

    :param attributes: node attribute table
    :param edges: list of edges
    :return: `networkx.Graph` object representing the basis network
    """
    graph = nx.Graph()
    graph.add_nodes_from(attributes.reset_index(drop=True).to_dict(orient="index").items())
    graph.add_edges_from(edges)
    return graph


def readRandomSeed(df: Optional[pd.DataFrame]) -> int:
    """
    Transforms the dataframe into the random seed used by the simulation

    :param df: a dataframe containing the random seed
    :return: the random seed as an int
    """
    if df is None:
        return 0

    if len(df) != 1 or list(df.columns) != ["Value"]:
        raise ValueError("The random seed table must have a single row and a single column named Value")

    for row in df.to_dict(orient="records"):
        return _parseCount(row["Value"], "Seed")

    raise ValueError("No seed found")
