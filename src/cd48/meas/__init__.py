"""Measurements built from CD48 counter reads."""

from .counting import (
    coincidence_from_counts,
    measure_coincidence_rate,
    measure_rate,
    measure_rate_series,
    rate_from_counts,
)
