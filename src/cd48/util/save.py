# -*- coding: utf-8 -*-
"""Exporting measurement records.

Three formats are supported, chosen by `save_measurements` from the file
extension:

- `.json` : list of records as plain dicts (simplejson, 2 space indent)
- `.csv`  : one row per record, header row optional
- `.mat`  : MATLAB matrix, one row per record, via `scipy.io.savemat`

All records in one export must be of the same type (`CountData`,
`RateMeasurement` or `CoincidenceMeasurement`).

CSV Columns
-----------
counts       : ch0..ch7, overflow
rates        : channel, counts, duration, rate, uncertainty_counts,
               uncertainty_rate, uncertainty_relative
coincidences : singlesA, singlesB, coincidences, duration, rateA, rateB,
               coincidenceRate, accidentalRate, trueCoincidenceRate, then the
               same eight quantities prefixed `unc_`
"""

from __future__ import annotations

from pathlib import Path
from typing import Sequence, Union

import numpy as np
import scipy.io
import simplejson as json
from loguru import logger

from cd48.types.results import CoincidenceMeasurement, CountData, RateMeasurement

Record = Union[CountData, RateMeasurement, CoincidenceMeasurement]

JSON_INDENT = 2
DEFAULT_PRECISION = 6
DEFAULT_MAT_VARIABLE = "cd48_data"

COUNT_HEADERS = [f"ch{i}" for i in range(8)] + ["overflow"]
RATE_HEADERS = [
    "channel",
    "counts",
    "duration",
    "rate",
    "uncertainty_counts",
    "uncertainty_rate",
    "uncertainty_relative",
]
_COINC_QUANTITIES = [
    "singlesA",
    "singlesB",
    "coincidences",
    "rateA",
    "rateB",
    "coincidenceRate",
    "accidentalRate",
    "trueCoincidenceRate",
]
COINCIDENCE_HEADERS = (
    ["singlesA", "singlesB", "coincidences", "duration"]
    + _COINC_QUANTITIES[3:]
    + ["unc_" + q for q in _COINC_QUANTITIES]
)


class NumpyEncoder(json.JSONEncoder):
    """Special json encoder for numpy types"""

    def default(self, o):
        if isinstance(o, np.integer):
            return int(o)
        if isinstance(o, np.floating):
            return float(o)
        if isinstance(o, np.ndarray):
            return o.tolist()
        return json.JSONEncoder.default(self, o)


# =============================================================================
# Row builders
# =============================================================================


def _count_row(item: CountData) -> list:
    return [*item.counts, item.overflow]


def _rate_row(item: RateMeasurement) -> list:
    u = item.uncertainty
    return [
        item.channel,
        item.counts,
        item.duration,
        item.rate,
        u.counts,
        u.rate,
        u.relative,
    ]


def _coincidence_row(item: CoincidenceMeasurement) -> list:
    u = item.uncertainty
    return [
        item.singles_a,
        item.singles_b,
        item.coincidences,
        item.duration,
        item.rate_a,
        item.rate_b,
        item.coincidence_rate,
        item.accidental_rate,
        item.true_coincidence_rate,
        u.singles_a,
        u.singles_b,
        u.coincidences,
        u.rate_a,
        u.rate_b,
        u.coincidence_rate,
        u.accidental_rate,
        u.true_coincidence_rate,
    ]


def _fmt(value, precision: int) -> str:
    # ints (counts, channel numbers) are written verbatim
    if isinstance(value, (int, np.integer)):
        return str(value)
    return f"{value:.{precision}f}"


def _to_csv(
    headers: list[str],
    rows: list[list],
    include_headers: bool,
    separator: str,
    line_ending: str,
    precision: int,
) -> str:
    lines = []
    if include_headers:
        lines.append(separator.join(headers))
    for row in rows:
        lines.append(separator.join(_fmt(v, precision) for v in row))
    return line_ending.join(lines)


# =============================================================================
# CSV / JSON
# =============================================================================


def counts_to_csv(
    data: Sequence[CountData],
    include_headers: bool = True,
    separator: str = ",",
    line_ending: str = "\n",
    precision: int = DEFAULT_PRECISION,
) -> str:
    return _to_csv(
        COUNT_HEADERS,
        [_count_row(d) for d in data],
        include_headers,
        separator,
        line_ending,
        precision,
    )


def rates_to_csv(
    data: Sequence[RateMeasurement],
    include_headers: bool = True,
    separator: str = ",",
    line_ending: str = "\n",
    precision: int = DEFAULT_PRECISION,
) -> str:
    """Rate measurements as CSV; floats are written with `precision` decimals."""
    return _to_csv(
        RATE_HEADERS,
        [_rate_row(d) for d in data],
        include_headers,
        separator,
        line_ending,
        precision,
    )


def coincidences_to_csv(
    data: Sequence[CoincidenceMeasurement],
    include_headers: bool = True,
    separator: str = ",",
    line_ending: str = "\n",
    precision: int = DEFAULT_PRECISION,
) -> str:
    return _to_csv(
        COINCIDENCE_HEADERS,
        [_coincidence_row(d) for d in data],
        include_headers,
        separator,
        line_ending,
        precision,
    )


def to_json(data: Sequence[Record]) -> str:
    return json.dumps(
        [d.to_dict() for d in data], cls=NumpyEncoder, indent=JSON_INDENT
    )


# =============================================================================
# Files
# =============================================================================


def _rows_for(data: Sequence[Record]) -> tuple[list[str], list[list]]:
    if not data:
        raise ValueError("Nothing to export")
    kinds = {type(d) for d in data}
    if len(kinds) != 1:
        raise ValueError(
            f"Cannot mix record types in one export: {sorted(k.__name__ for k in kinds)}"
        )
    kind = kinds.pop()
    if kind is CountData:
        return COUNT_HEADERS, [_count_row(d) for d in data]
    if kind is RateMeasurement:
        return RATE_HEADERS, [_rate_row(d) for d in data]
    if kind is CoincidenceMeasurement:
        return COINCIDENCE_HEADERS, [_coincidence_row(d) for d in data]
    raise ValueError(f"Don't know how to export {kind.__name__}")


def save_mat(
    path: str | Path,
    data: Sequence[Record],
    variable_name: str = DEFAULT_MAT_VARIABLE,
) -> Path:
    """Save records as a MATLAB file.

    The file holds `variable_name` (an N x M double matrix, one row per
    record) and `<variable_name>_columns` with the column names.
    """
    headers, rows = _rows_for(data)
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    scipy.io.savemat(
        str(path),
        {
            variable_name: np.asarray(rows, dtype=float),
            f"{variable_name}_columns": np.array(headers, dtype=object),
        },
    )
    logger.info("Saved {} records to {}", len(rows), path)
    return path


def save_measurements(
    path: str | Path, data: Sequence[Record], **csv_options
) -> Path:
    """Write `data` to `path`, format chosen by the file extension.

    Parameters
    ----------
    path : str | Path
        Destination; `.json`, `.csv` or `.mat`
    data : Sequence[Record]
        Records of a single type
    **csv_options
        Passed to the CSV writer (include_headers, separator, precision, ...)

    Returns
    -------
    Path
        The path written

    Raises
    ------
    ValueError
        For an unknown extension, empty data or mixed record types
    """
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix == ".mat":
        return save_mat(path, data)

    headers, rows = _rows_for(data)
    if suffix == ".json":
        text = to_json(data)
    elif suffix == ".csv":
        text = _to_csv(
            headers,
            rows,
            csv_options.get("include_headers", True),
            csv_options.get("separator", ","),
            csv_options.get("line_ending", "\n"),
            csv_options.get("precision", DEFAULT_PRECISION),
        )
    else:
        raise ValueError(f"Unsupported export format '{suffix}' (use .json, .csv or .mat)")

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    logger.info("Saved {} records to {}", len(rows), path)
    return path
