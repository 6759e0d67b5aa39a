"""
Terms of the statistical network model and the summary statistics they compute.

A formula is written the usual way, for instance ``"edges + nodefactor(race) + concurrent + degree(0:2)"``, and is
parsed into a tuple of `TermSpec`. Before it can be evaluated, a formula has to be bound to a node attribute table
(see :meth:`bindFormula`), since terms like ``nodefactor`` need to know the attribute values and their levels.

A bound formula can compute its statistics in two ways:

1. :meth:`BoundFormula.summary` recomputes them from scratch for an edge list.
2. :meth:`BoundFormula.change` gives the change statistic, the difference in every statistic caused by toggling a
   single dyad. This is what the samplers use, both to accept or reject proposals and to keep a running total.

Both must always agree: starting from a summary and adding the change statistics of a sequence of toggles gives the
summary of the resulting network.
"""
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, NamedTuple, Optional, Set, Tuple, Type, Union

import numpy as np  # type: ignore
import pandas as pd  # type: ignore

logger = logging.getLogger(__name__)

# Type aliases used to make the types for the functions below easier to read
Edge = Tuple[int, int]
Argument = Union[int, str]


class TermSpec(NamedTuple):
    """
    A term as written in a formula, before it is bound to any data
    """
    name: str
    args: Tuple[Argument, ...] = ()
    kwargs: Tuple[Tuple[str, Argument], ...] = ()
    offset: bool = False

    def kwarg(self, key: str, default: Optional[Argument] = None) -> Optional[Argument]:
        """Value of a keyword argument, or the default if it wasn't given"""
        return dict(self.kwargs).get(key, default)

    def __str__(self) -> str:
        arguments = [str(arg) for arg in self.args] + [f"{key}={value}" for key, value in self.kwargs]
        text = f"{self.name}({', '.join(arguments)})" if arguments else self.name
        return f"offset({text})" if self.offset else text


Formula = Tuple[TermSpec, ...]

_TERM_RE = re.compile(r"^(?P<name>[A-Za-z_][A-Za-z0-9_.]*)\s*(?:\((?P<args>.*)\))?$")
_RANGE_RE = re.compile(r"^(-?\d+)\s*:\s*(-?\d+)$")


def parseFormula(formula: Union[str, Formula], known: Optional[Iterable[str]] = None) -> Formula:
    """Parse a formula string into a tuple of term specs.

    >>> parseFormula("~edges + degree(0:2)")
    (TermSpec(name='edges', args=(), kwargs=(), offset=False), TermSpec(name='degree', args=(0, 1, 2), kwargs=(), offset=False))

    :param formula: formula string. A parsed formula is returned unchanged
    :param known: names of the terms allowed in the formula. Defaults to every term implemented in this module
    :return: the parsed formula
    """
    if isinstance(formula, tuple):
        return formula
    if not isinstance(formula, str):
        raise ValueError(f"A formula must be a string, got {formula!r}")
    known = set(TERMS if known is None else known)

    text = formula.strip()
    if text.startswith("~"):
        text = text[1:].strip()
    if not text:
        return ()
    return tuple(_parseTerm(raw, known) for raw in text.split("+"))


def _parseTerm(raw: str, known: Set[str]) -> TermSpec:
    match = _TERM_RE.match(raw.strip())
    if match is None:
        raise ValueError(f"Malformed term: {raw.strip()!r}")
    name = match.group("name")
    argText = match.group("args")

    if name == "offset":
        if not argText or not argText.strip():
            raise ValueError("offset() must wrap a term")
        return _parseTerm(argText, known)._replace(offset=True)

    if name not in known:
        raise ValueError(f"Unknown term: {name}")

    args: List[Argument] = []
    kwargs: List[Tuple[str, Argument]] = []
    if argText and argText.strip():
        for arg in argText.split(","):
            arg = arg.strip()
            if not arg:
                raise ValueError(f"Empty argument in {raw.strip()!r}")
            if "=" in arg:
                key, value = (part.strip() for part in arg.split("=", 1))
                kwargs.append((key, _parseValue(value)))
            else:
                args.extend(_parseArgument(arg))
    return TermSpec(name=name, args=tuple(args), kwargs=tuple(kwargs))


def _parseArgument(arg: str) -> List[Argument]:
    rangeMatch = _RANGE_RE.match(arg)
    if rangeMatch:
        start, end = int(rangeMatch.group(1)), int(rangeMatch.group(2))
        if start > end:
            raise ValueError(f"Invalid range {arg}")
        return list(range(start, end + 1))
    return [_parseValue(arg)]


def _parseValue(value: str) -> Argument:
    value = value.strip().strip("\"'")
    try:
        return int(value)
    except ValueError:
        return value


def formulaToString(formula: Formula) -> str:
    """Inverse of :meth:`parseFormula`, used for logging"""
    return " + ".join(str(spec) for spec in formula)


def toEdgelist(edges: Optional[Iterable[Iterable[int]]]) -> np.ndarray:
    """Converts any collection of edges into the canonical edge list used everywhere in this package.

    The canonical edge list is a ``k x 2`` array of ints, where each row has the lowest node id first, and the rows are
    sorted and unique. Self loops are not allowed.

    >>> toEdgelist([(3, 1), (0, 2), (1, 3)])
    array([[0, 2],
           [1, 3]])

    :param edges: an iterable of pairs of node ids, or None for the empty edge list
    :return: the canonical edge list
    """
    if edges is None:
        return np.empty((0, 2), dtype=int)
    el = np.array([tuple(edge) for edge in edges] if not isinstance(edges, np.ndarray) else edges, dtype=int)
    if el.size == 0:
        return np.empty((0, 2), dtype=int)
    el = el.reshape(-1, 2)
    if np.any(el[:, 0] == el[:, 1]):
        raise ValueError("Self loops are not allowed in the network")
    el = np.sort(el, axis=1)
    return np.unique(el, axis=0)


def degreeOf(el: np.ndarray, n: int) -> np.ndarray:
    """Degree of every node in an edge list with n nodes"""
    return np.bincount(el.ravel(), minlength=n)


def activeMask(attributes: pd.DataFrame) -> np.ndarray:
    """
    Boolean mask of active nodes. A table with no ``active`` column means every node is active.
    """
    if "active" not in attributes.columns:
        return np.ones(len(attributes), dtype=bool)
    return attributes["active"].to_numpy() == 1


class BoundTerm(ABC):
    """
    A term bound to the node attribute table. Subclasses must set `names`, one per statistic they compute
    """
    names: List[str]
    dyadIndependent: bool = True

    def __init__(self, spec: TermSpec, attributes: pd.DataFrame):
        self.spec = spec

    @abstractmethod
    def summary(self, el: np.ndarray, degree: np.ndarray, active: np.ndarray) -> np.ndarray:
        """ Statistics of the network given by the edge list """

    @abstractmethod
    def addChange(self, i: int, j: int, degreeI: int, degreeJ: int) -> np.ndarray:
        """ Change in the statistics caused by adding edge i-j, given the degrees of i and j without that edge """


def _attributeValues(spec: TermSpec, attributes: pd.DataFrame) -> Tuple[str, np.ndarray]:
    if not spec.args:
        raise ValueError(f"{spec.name} needs an attribute name")
    attr = str(spec.args[0])
    if attr not in attributes.columns:
        raise ValueError(f"{spec.name}: unknown node attribute {attr}")
    return attr, attributes[attr].to_numpy()


class Edges(BoundTerm):
    """Number of edges"""
    names = ["edges"]

    def summary(self, el, degree, active):
        return np.array([len(el)], dtype=float)

    def addChange(self, i, j, degreeI, degreeJ):
        return np.ones(1)


class NodeFactor(BoundTerm):
    """
    Number of edge endpoints at nodes of each level of a categorical attribute. The ``base``-th level (in sorted order)
    is left out, unless ``base=0``.
    """

    def __init__(self, spec: TermSpec, attributes: pd.DataFrame):
        super().__init__(spec, attributes)
        attr, self.values = _attributeValues(spec, attributes)
        base = int(spec.kwarg("base", 1))
        levels = sorted(pd.unique(self.values).tolist())
        if base > len(levels):
            raise ValueError(f"nodefactor: base {base} is larger than the number of levels of {attr}")
        self.levels = np.array([level for k, level in enumerate(levels) if k != base - 1])
        self.names = [f"nodefactor.{attr}.{level}" for level in self.levels]

    def summary(self, el, degree, active):
        ends = self.values[el]
        return np.array([np.sum(ends == level) for level in self.levels], dtype=float)

    def addChange(self, i, j, degreeI, degreeJ):
        return (self.levels == self.values[i]).astype(float) + (self.levels == self.values[j]).astype(float)


class NodeMatch(BoundTerm):
    """Number of edges between nodes with the same value of an attribute"""

    def __init__(self, spec: TermSpec, attributes: pd.DataFrame):
        super().__init__(spec, attributes)
        attr, self.values = _attributeValues(spec, attributes)
        self.names = [f"nodematch.{attr}"]

    def summary(self, el, degree, active):
        return np.array([np.sum(self.values[el[:, 0]] == self.values[el[:, 1]])], dtype=float)

    def addChange(self, i, j, degreeI, degreeJ):
        return np.array([float(self.values[i] == self.values[j])])


class AbsDiff(BoundTerm):
    """Sum over edges of the absolute difference of a numeric attribute"""

    def __init__(self, spec: TermSpec, attributes: pd.DataFrame):
        super().__init__(spec, attributes)
        attr, values = _attributeValues(spec, attributes)
        self.values = values.astype(float)
        self.names = [f"absdiff.{attr}"]

    def summary(self, el, degree, active):
        return np.array([np.sum(np.abs(self.values[el[:, 0]] - self.values[el[:, 1]]))])

    def addChange(self, i, j, degreeI, degreeJ):
        return np.array([abs(self.values[i] - self.values[j])])


class Concurrent(BoundTerm):
    """Number of active nodes with two or more edges"""
    names = ["concurrent"]
    dyadIndependent = False

    def summary(self, el, degree, active):
        return np.array([np.sum((degree >= 2) & active)], dtype=float)

    def addChange(self, i, j, degreeI, degreeJ):
        return np.array([float(degreeI == 1) + float(degreeJ == 1)])


class Degree(BoundTerm):
    """Number of active nodes with exactly d edges, for each d given"""
    dyadIndependent = False

    def __init__(self, spec: TermSpec, attributes: pd.DataFrame):
        super().__init__(spec, attributes)
        if not spec.args or not all(isinstance(d, int) and d >= 0 for d in spec.args):
            raise ValueError("degree needs one or more non-negative integers")
        self.degrees = np.array(spec.args)
        self.names = [f"degree{d}" for d in spec.args]

    def summary(self, el, degree, active):
        return np.array([np.sum((degree == d) & active) for d in self.degrees], dtype=float)

    def addChange(self, i, j, degreeI, degreeJ):
        return (
            (self.degrees == degreeI + 1).astype(float) - (self.degrees == degreeI)
            + (self.degrees == degreeJ + 1) - (self.degrees == degreeJ)
        )


TERMS: Dict[str, Type[BoundTerm]] = {
    "edges": Edges,
    "nodefactor": NodeFactor,
    "nodematch": NodeMatch,
    "absdiff": AbsDiff,
    "concurrent": Concurrent,
    "degree": Degree,
}


class BoundFormula:
    """
    A formula whose terms are bound to a node attribute table

    :param formula: the parsed formula
    :param attributes: node attribute table, one row per node. Node ids are the row positions
    """

    def __init__(self, formula: Formula, attributes: pd.DataFrame):
        self.formula = formula
        self.n = len(attributes)
        self.terms = [TERMS[spec.name](spec, attributes) for spec in formula]
        self.names = [name for term in self.terms for name in term.names]
        self.dyadIndependent = all(term.dyadIndependent for term in self.terms)

    def __len__(self) -> int:
        return len(self.names)

    def summary(self, el: np.ndarray, active: Optional[np.ndarray] = None) -> np.ndarray:
        """Statistics of the network given by the edge list

        :param el: canonical edge list (see :meth:`toEdgelist`)
        :param active: mask of active nodes, used by the degree based terms. Defaults to every node being active
        :return: one value per statistic, in the order of `names`
        """
        if active is None:
            active = np.ones(self.n, dtype=bool)
        degree = degreeOf(el, self.n)
        if not self.terms:
            return np.zeros(0)
        return np.concatenate([term.summary(el, degree, active) for term in self.terms])

    def change(self, i: int, j: int, degree: np.ndarray, present: bool) -> np.ndarray:
        """Change statistics for toggling dyad i-j

        :param i: node id
        :param j: node id
        :param degree: degree of every node in the current network
        :param present: whether i-j is an edge in the current network (i.e. whether the toggle removes it)
        :return: one value per statistic, in the order of `names`
        """
        if not self.terms:
            return np.zeros(0)
        if present:
            return -self._addChange(i, j, degree[i] - 1, degree[j] - 1)
        return self._addChange(i, j, degree[i], degree[j])

    def _addChange(self, i: int, j: int, degreeI: int, degreeJ: int) -> np.ndarray:
        return np.concatenate([term.addChange(i, j, degreeI, degreeJ) for term in self.terms])


def bindFormula(formula: Union[str, Formula], attributes: pd.DataFrame) -> BoundFormula:
    """Parse (if needed) and bind a formula to the node attribute table

    :param formula: formula string or parsed formula
    :param attributes: node attribute table
    :return: the bound formula
    """
    return BoundFormula(parseFormula(formula), attributes)
