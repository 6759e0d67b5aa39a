"""
The simulation context, which owns everything about a single run: the node attributes (including which nodes are
active), the epidemic time series, the control options, the network model and the network state.

The outer simulation driver is responsible for the demographic and epidemic state. The resimulation only reads the
attributes and epidemic series through the accessors below, and writes back the network state and its statistics.

Control options are kept in the immutable `Control` tuple. They are read and written with the dotted option names
(e.g. ``"resimulate.network"``); writing an option replaces the whole tuple.
"""
import logging
from typing import Any, Dict, List, NamedTuple, Optional, Union

import numpy as np  # type: ignore
import pandas as pd  # type: ignore

from dynamic_network_sim.common import Issue
from dynamic_network_sim.model import NetworkModel
from dynamic_network_sim.networks import NetworkState
from dynamic_network_sim.sampler import MCMCControl
from dynamic_network_sim.terms import Formula

logger = logging.getLogger(__name__)


class Control(NamedTuple):
    """
    Control options of the network resimulation
    """
    resimulateNetwork: bool = True
    tergmLite: bool = False
    isTergm: Optional[bool] = None
    saveNwstats: bool = True
    nwstatsFormula: Union[str, Formula] = "formation"
    tergmLiteTrackDuration: bool = False
    setControlErgm: MCMCControl = MCMCControl()
    setControlStergm: MCMCControl = MCMCControl(burnin=2000, interval=100)


CONTROL_OPTIONS = {
    "resimulate.network": "resimulateNetwork",
    "tergmLite": "tergmLite",
    "isTERGM": "isTergm",
    "save.nwstats": "saveNwstats",
    "nwstats.formula": "nwstatsFormula",
    "tergmLite.track.duration": "tergmLiteTrackDuration",
    "set.control.ergm": "setControlErgm",
    "set.control.stergm": "setControlStergm",
}


def _controlField(name: str) -> str:
    try:
        return CONTROL_OPTIONS[name]
    except KeyError:
        raise ValueError(f"Unknown control option: {name}") from None


# pylint: disable=too-many-instance-attributes
class SimulationContext:
    """
    Everything about a single simulation run

    :param nwparam: the network model. Its formation coefficients are corrected in place during the run
    :param control: control options
    :param attributes: node attribute table, one row per node. Must have an ``active`` column (1 for active nodes)
                       and, for two-group models, a ``group`` column with values 1 and 2
    :param generator: seeded random number generator used for every draw of this run
    :param param: model parameters, e.g. ``{"groups": 2}``
    """

    def __init__(
            self,
            nwparam: NetworkModel,
            control: Control,
            attributes: pd.DataFrame,
            generator: np.random.Generator,
            param: Optional[Dict[str, Any]] = None,
    ):
        self.nwparam = nwparam
        self.control = control
        self.attributes = attributes.reset_index(drop=True)
        self.generator = generator
        self.param: Dict[str, Any] = {"groups": 1}
        self.param.update(param or {})
        self.epi: Dict[str, Dict[int, float]] = {}
        self.network: Optional[NetworkState] = None
        self.nwstats: Optional[pd.DataFrame] = None
        self.terms: Any = None
        self.temp: Dict[str, Any] = {}
        self.issues: List[Issue] = []

        if self.param["groups"] not in (1, 2):
            raise ValueError(f"groups must be 1 or 2, got {self.param['groups']}")
        if "active" not in self.attributes.columns:
            raise ValueError("The attribute table must have an active column")
        if self.param["groups"] == 2 and "group" not in self.attributes.columns:
            raise ValueError("Two-group models need a group column in the attribute table")

    def getAttribute(self, name: str) -> np.ndarray:
        """Values of a node attribute, one per node"""
        return self.attributes[name].to_numpy()

    def getEpidemicSeries(self, name: str, stepIndex: int) -> float:
        """Value of an epidemic time series at a given step"""
        try:
            return self.epi[name][stepIndex]
        except KeyError:
            raise ValueError(f"No value of {name} recorded at step {stepIndex}") from None

    def recordEpidemicSeries(self, name: str, stepIndex: int, value: float):
        self.epi.setdefault(name, {})[stepIndex] = value

    def getControlOption(self, name: str) -> Any:
        return getattr(self.control, _controlField(name))

    def setControlOption(self, name: str, value: Any):
        self.control = self.control._replace(**{_controlField(name): value})

    def getParamOption(self, name: str) -> Any:
        return self.param[name]
