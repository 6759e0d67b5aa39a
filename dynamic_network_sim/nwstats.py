"""
Bookkeeping of the network statistics time series: one row per simulated step, one column per statistic.
"""
import logging
from typing import List, Optional

import numpy as np  # type: ignore
import pandas as pd  # type: ignore

logger = logging.getLogger(__name__)


def dedupeColumns(stats: pd.DataFrame) -> pd.DataFrame:
    """Drops repeated statistic names, keeping the first occurrence.

    A monitor formula often repeats terms of the model formula, and the sampler reports both.

    >>> dedupeColumns(pd.DataFrame([[10.0, 10.0, 3.0]], columns=["edges", "edges", "degree1"]))
       edges  degree1
    0   10.0      3.0

    :param stats: table of statistics
    :return: the same table with unique column names
    """
    return stats.loc[:, ~stats.columns.duplicated()]


def statsRow(values: np.ndarray, names: List[str]) -> pd.DataFrame:
    """A single row of statistics"""
    return pd.DataFrame([values], columns=names)


def appendStats(series: Optional[pd.DataFrame], new: pd.DataFrame) -> pd.DataFrame:
    """Appends rows of statistics to the time series.

    :param series: the time series so far, or None if nothing was recorded yet
    :param new: the new rows. Repeated names are dropped before appending
    :return: the extended time series
    """
    new = dedupeColumns(new).reset_index(drop=True)
    if series is None:
        return new
    if list(series.columns) != list(new.columns):
        logger.warning("Network statistics changed from %s to %s", list(series.columns), list(new.columns))
    return pd.concat([series, new], ignore_index=True)
