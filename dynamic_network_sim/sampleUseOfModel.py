"""
This is the main module used to run the network resimulation on its own, with a simple stand-in for the epidemic model
"""
import argparse
import copy
from concurrent import futures
import logging
import logging.config
from pathlib import Path
import sys
import time
from typing import Any, Dict, List, NamedTuple, Optional, Tuple

import numpy as np  # type: ignore
import pandas as pd  # type: ignore

from dynamic_network_sim import loaders
from dynamic_network_sim.common import Issue
from dynamic_network_sim.context import Control, SimulationContext
from dynamic_network_sim.model import NetworkModel, createNetworkModel
from dynamic_network_sim.network_resimulation import resimulateNetwork, simulateInitialNetwork

# Default logger, used if module not called as __main__
logger = logging.getLogger(__name__)


def main(argv):
    """
    Main function to run the network resimulation
    """
    t0 = time.time()

    args = build_args(argv)
    setup_logger(args)
    logger.info("Parameters\n%s", "\n".join(f"\t{key}={value}" for key, value in args._get_kwargs()))  # pylint: disable=protected-access

    inputs = readInputs(args.input_dir, args.departure_rate)
    results = runSimulation(
        inputs,
        args.steps,
        args.departure_rate,
        trials=args.trials,
        max_workers=None if not args.workers else args.workers,
    )
    aggregated = aggregateResults(results)

    logger.info("Writing output to %s", args.output)
    aggregated.to_csv(args.output, index=False)
    for result in results:
        for issue in result.issues:
            logger.info("Trial %s issue (severity %s): %s", result.trial, issue.severity, issue.description)

    logger.info("Took %.2fs to run the simulation.", time.time() - t0)


class Inputs(NamedTuple):
    """
    Everything read from the input directory
    """
    nwparam: NetworkModel
    control: Control
    attributes: pd.DataFrame
    param: Dict[str, Any]
    seed: int


def _readOptional(path: Path) -> Optional[pd.DataFrame]:
    if not path.exists():
        logger.info("%s not found, using defaults", path)
        return None
    return pd.read_csv(path)


def readInputs(inputDir: Path, departureRate: float = 0.0) -> Inputs:
    """Reads the input tables from a directory and creates the network model.

    The directory must have ``formation.csv`` and ``attributes.csv``. ``dissolution.csv``, ``control.csv``,
    ``basis_edges.csv`` and ``random_seed.csv`` are optional.

    :param inputDir: directory with the input tables
    :param departureRate: the rate at which nodes depart, used to adjust the dissolution coefficients
    :return: the inputs of the simulation
    """
    formation, coefficients = loaders.readFormation(pd.read_csv(inputDir / "formation.csv"))
    dissolution, durations = loaders.readDissolution(_readOptional(inputDir / "dissolution.csv"))
    attributes = loaders.readNodeAttributes(pd.read_csv(inputDir / "attributes.csv"))
    controlTable = _readOptional(inputDir / "control.csv")
    control = loaders.readControl(controlTable)
    parameters = loaders.readModelParameters(controlTable)
    edges = loaders.readBasisEdges(_readOptional(inputDir / "basis_edges.csv"), len(attributes))

    nwparam = createNetworkModel(
        formation,
        coefficients,
        loaders.genBasisGraph(attributes, edges),
        dissolution=dissolution,
        duration=durations,
        dRate=departureRate,
        constraints=parameters.constraints,
        edapprox=parameters.edapprox,
    )
    return Inputs(
        nwparam=nwparam,
        control=control,
        attributes=attributes,
        param={"groups": parameters.groups},
        seed=loaders.readRandomSeed(_readOptional(inputDir / "random_seed.csv")),
    )


def recordActiveCounts(ctx: SimulationContext, at: int):
    """Records the number of active nodes (per group, for two-group models) at a time step"""
    active = ctx.getAttribute("active") == 1
    if ctx.getParamOption("groups") == 2:
        group = ctx.getAttribute("group")
        ctx.recordEpidemicSeries("num", at, int(np.sum(active & (group == 1))))
        ctx.recordEpidemicSeries("num.g2", at, int(np.sum(active & (group == 2))))
    else:
        ctx.recordEpidemicSeries("num", at, int(np.sum(active)))


# pylint: disable=too-many-arguments
def runTrial(
        inputs: Inputs,
        steps: int,
        departureRate: float,
        generator: np.random.Generator,
) -> Tuple[pd.DataFrame, List[Issue]]:
    """Runs the resimulation over a number of time steps.

    At every step after the first, each active node departs with probability ``departureRate``, then the network is
    resimulated. This stands in for the demography of an epidemic model.

    :param inputs: the inputs of the simulation. They are copied, so that trials don't affect each other
    :param steps: number of time steps
    :param departureRate: probability of an active node departing at each step
    :param generator: random number generator for this trial
    :return: the network statistics, one row per step where they were recorded, and the issues found
    """
    ctx = SimulationContext(
        copy.deepcopy(inputs.nwparam),
        inputs.control,
        inputs.attributes.copy(),
        generator,
        inputs.param,
    )
    simulateInitialNetwork(ctx)
    recordActiveCounts(ctx, 1)
    times = [1] * (len(ctx.nwstats) if ctx.nwstats is not None else 0)

    for at in range(2, steps + 1):
        active = ctx.getAttribute("active") == 1
        departing = active & (generator.random(len(active)) < departureRate)
        ctx.attributes.loc[departing, "active"] = 0

        recorded = len(ctx.nwstats) if ctx.nwstats is not None else 0
        resimulateNetwork(ctx, at)
        recordActiveCounts(ctx, at)
        if ctx.nwstats is not None:
            times.extend([at] * (len(ctx.nwstats) - recorded))

    stats = ctx.nwstats.copy() if ctx.nwstats is not None else pd.DataFrame()
    stats.insert(0, "time", times)
    return stats, ctx.issues


class Result(NamedTuple):
    """
    This object contains the results of a single trial
    """
    output: pd.DataFrame
    issues: List[Issue]
    trial: int


def runSimulation(
        inputs: Inputs,
        steps: int,
        departureRate: float,
        trials: int = 1,
        max_workers: Optional[int] = None,
) -> List[Result]:
    """Run the trials of the simulation

    :param inputs: the inputs of the simulation
    :param steps: number of time steps
    :param departureRate: probability of an active node departing at each step
    :param trials: number of independent trials
    :param max_workers: maximum number of processes to spawn when running multiple trials
    :return: Result runs for all trials of the simulation, in trial order
    """
    results = []
    with futures.ProcessPoolExecutor(max_workers=max_workers) as executor:
        delayed: Dict[futures.Future, int] = {}
        for trial, seq in enumerate(np.random.SeedSequence(inputs.seed).spawn(trials)):
            future = executor.submit(runTrial, inputs, steps, departureRate, np.random.default_rng(seq))
            delayed[future] = trial

        for t, future in enumerate(futures.as_completed(delayed), start=1):
            logger.info("Running simulation (%s/%s)", t, trials)
            output, issues = future.result()
            results.append(Result(output=output, issues=issues, trial=delayed[future]))

    return sorted(results, key=lambda result: result.trial)


def aggregateResults(results: List[Result]) -> pd.DataFrame:
    """Stack the statistics of every trial in a single table

    :param results: result runs from runSimulation
    :return: the statistics of every trial, with a trial column
    """
    tables = [result.output.assign(trial=result.trial) for result in results]
    return pd.concat(tables, ignore_index=True)


def setup_logger(args: Optional[argparse.Namespace] = None) -> None:
    """
    Configure package-level logger instance.

    :param args: argparse.Namespace
        args.logfile (pathlib.Path) is used to create a logfile if present
        args.quiet and args.debug control logging level to sys.stderr

    This function can be called without args, in which case it configures the
    package logger to write INFO and above to STDERR.

    When called with args, it uses args.logfile to determine if logs (by
    default, INFO and above) should be written to a file, and the path of
    that file. args.quiet and args.debug are used to control reporting level.
    """
    logconf = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "standard": {
                "format": "[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s",
            },
        },
        "handlers": {
            "stderr": {
                "level": "INFO",
                "class": "logging.StreamHandler",
                "formatter": "standard",
                "stream": "ext://sys.stderr",
            },
        },
        "loggers": {"dynamic_network_sim": {"handlers": ["stderr"], "level": "DEBUG"}},
    }

    if args is not None and args.logfile is not None:
        logdir = args.logfile.parents[0]
        try:
            if not logdir == Path.cwd():
                logdir.mkdir(parents=True, exist_ok=True)
        except OSError:
            logger.error("Could not create %s for logging", logdir, exc_info=True)
            raise SystemExit(1)
        logconf["handlers"]["logfile"] = {  # type: ignore
            "class": "logging.FileHandler",
            "level": "INFO",
            "formatter": "standard",
            "filename": str(args.logfile),
            "encoding": "utf8",
        }
        logconf["loggers"]["dynamic_network_sim"]["handlers"].append("logfile")  # type: ignore

    if args is not None and args.quiet:
        logconf["handlers"]["stderr"]["level"] = "WARNING"  # type: ignore
    elif args is not None and args.debug:
        logconf["handlers"]["stderr"]["level"] = "DEBUG"  # type: ignore
        if "logfile" in logconf["handlers"]:  # type: ignore
            logconf["handlers"]["logfile"]["level"] = "DEBUG"  # type: ignore

    logging.config.dictConfig(logconf)


def build_args(argv):
    """Return parsed CLI arguments as argparse.Namespace.

    :param argv: CLI arguments
    :type argv: list
    """

    parser = argparse.ArgumentParser(
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
        description="Resimulates a dynamic contact network over time as nodes depart",
    )
    parser.add_argument(
        "-i",
        "--input-dir",
        type=Path,
        required=True,
        help="Directory with the formation, dissolution, attributes, control and basis edges tables",
    )
    parser.add_argument("--steps", type=int, default=10, help="Number of time steps to simulate")
    parser.add_argument(
        "--departure-rate",
        type=float,
        default=0.0,
        help="Probability of each active node departing at every time step",
    )
    parser.add_argument("--trials", type=int, default=1, help="Number of independent trials")
    parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=Path("nwstats.csv"),
        help="Where to write the network statistics of every trial",
    )
    parser.add_argument(
        "-l",
        "--logfile",
        dest="logfile",
        default=None,
        type=Path,
        help="Path for logging output",
    )
    parser.add_argument(
        "-q",
        "--quiet",
        dest="quiet",
        action="store_true",
        help="Prints only warnings to stderr",
    )
    parser.add_argument(
        "--debug", action="store_true", help="Provide debug output to STDERR"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=0,
        help="Defaults to the number of CPUs in the machine",
    )

    args = parser.parse_args(argv)
    if args.steps < 1:
        parser.error("--steps must be at least 1")
    if args.trials < 1:
        parser.error("--trials must be at least 1")
    if not 0.0 <= args.departure_rate < 1.0:
        parser.error("--departure-rate must be in [0, 1)")
    return args


def cli():
    main(sys.argv[1:])


if __name__ == "__main__":
    # The logger name inherits from the package, if called as __main__
    logger = logging.getLogger(f"{__package__}.{__name__}")
    main(sys.argv[1:])
