"""Count rate and coincidence rate measurements.

Both measurements follow the same clear / wait / read pattern: the CD48
zeroes its counters whenever they are read, so one discarded `c` read starts
the gate, and the read after `duration` seconds gives the counts inside it.

Uncertainties assume Poisson statistics on each counter.

Rate
----
    rate     = N / T
    sigma_N  = sqrt(N)
    sigma_R  = sigma_N / T
    relative = sigma_N / N * 100   (0 when N == 0)

Coincidences
------------
    R_acc  = 2 tau R_A R_B
    R_true = max(0, R_C - R_acc)
    sigma(R_acc)  = (2 tau / T) sqrt((R_B sigma_A)^2 + (R_A sigma_B)^2)
    sigma(R_true) = sqrt(sigma(R_C)^2 + sigma(R_acc)^2)

The true rate is clamped at zero; its uncertainty is not.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

import numpy as np
from loguru import logger

from cd48.types.errors import ValidationError
from cd48.types.results import (
    CoincidenceMeasurement,
    CoincidenceUncertainty,
    RateMeasurement,
    RateUncertainty,
)
from cd48.types.validation import validate_channel, validate_duration
from cd48.util.abort import AbortSignal
from cd48.util.defaults import (
    ACCIDENTAL_RATE_MULTIPLIER,
    COINCIDENCE_WINDOW,
    DEFAULT_COINCIDENCE_CHANNEL,
    DEFAULT_MEASUREMENT_DURATION,
    DEFAULT_SINGLES_A_CHANNEL,
    DEFAULT_SINGLES_B_CHANNEL,
    PERCENT_CONVERSION,
)

if TYPE_CHECKING:
    from cd48.device.cd48 import CD48


def _poisson_sigma(n: float) -> float:
    return float(np.sqrt(max(0.0, n)))


# =============================================================================
# Arithmetic
# =============================================================================


def rate_from_counts(channel: int, counts: int, duration: float) -> RateMeasurement:
    """Rate and Poisson uncertainty for `counts` events in `duration` seconds."""
    sigma_n = _poisson_sigma(counts)
    return RateMeasurement(
        channel=channel,
        duration=duration,
        counts=counts,
        rate=counts / duration,
        uncertainty=RateUncertainty(
            counts=sigma_n,
            rate=sigma_n / duration,
            relative=sigma_n / counts * PERCENT_CONVERSION if counts > 0 else 0.0,
        ),
    )


def coincidence_from_counts(
    singles_a: int,
    singles_b: int,
    coincidences: int,
    duration: float,
    window: float = COINCIDENCE_WINDOW,
) -> CoincidenceMeasurement:
    """Coincidence rates corrected for accidentals.

    Parameters
    ----------
    singles_a, singles_b : int
        Singles counts on the two detectors
    coincidences : int
        Counts on the coincidence channel
    duration : float
        Gate time (s)
    window : float
        Coincidence window tau (s)

    Returns
    -------
    CoincidenceMeasurement
    """
    rate_a = singles_a / duration
    rate_b = singles_b / duration
    coincidence_rate = coincidences / duration
    accidental_rate = ACCIDENTAL_RATE_MULTIPLIER * window * rate_a * rate_b
    true_rate = max(0.0, coincidence_rate - accidental_rate)

    sigma_a = _poisson_sigma(singles_a)
    sigma_b = _poisson_sigma(singles_b)
    sigma_c = _poisson_sigma(coincidences)
    sigma_rate_c = sigma_c / duration
    sigma_acc = (ACCIDENTAL_RATE_MULTIPLIER * window / duration) * float(
        np.sqrt((rate_b * sigma_a) ** 2 + (rate_a * sigma_b) ** 2)
    )
    sigma_true = float(np.sqrt(sigma_rate_c**2 + sigma_acc**2))

    return CoincidenceMeasurement(
        singles_a=singles_a,
        singles_b=singles_b,
        coincidences=coincidences,
        duration=duration,
        rate_a=rate_a,
        rate_b=rate_b,
        coincidence_rate=coincidence_rate,
        accidental_rate=accidental_rate,
        true_coincidence_rate=true_rate,
        uncertainty=CoincidenceUncertainty(
            singles_a=sigma_a,
            singles_b=sigma_b,
            coincidences=sigma_c,
            rate_a=sigma_a / duration,
            rate_b=sigma_b / duration,
            coincidence_rate=sigma_rate_c,
            accidental_rate=sigma_acc,
            true_coincidence_rate=sigma_true,
        ),
    )


# =============================================================================
# Measurements
# =============================================================================


async def _gate(device: CD48, duration: float, signal: Optional[AbortSignal]):
    """Clear, wait `duration`, read. Returns the counts inside the gate."""
    await device.clear_counts(signal=signal)
    await device.sleep_with_abort(duration, signal)
    return await device.get_counts(signal=signal)


async def measure_rate(
    device: CD48,
    channel: int = 0,
    duration: float = DEFAULT_MEASUREMENT_DURATION,
    signal: Optional[AbortSignal] = None,
) -> RateMeasurement:
    """Count on one channel for `duration` seconds.

    Raises
    ------
    InvalidChannelError, ValidationError
        Bad channel or duration, before anything is sent
    OperationAbortedError
        `signal` fired before or during the measurement
    """
    validate_channel(channel)
    validate_duration(duration)
    if signal is not None:
        signal.raise_if_aborted("measure_rate")

    logger.debug("Measuring rate on channel {} for {}s", channel, duration)
    data = await _gate(device, duration, signal)
    result = rate_from_counts(int(channel), data.counts[int(channel)], duration)
    logger.info(
        "Channel {}: {} counts in {}s, {:.3f} +/- {:.3f} /s",
        result.channel,
        result.counts,
        duration,
        result.rate,
        result.uncertainty.rate,
    )
    return result


async def measure_rate_series(
    device: CD48,
    channel: int = 0,
    duration: float = DEFAULT_MEASUREMENT_DURATION,
    repeats: int = 1,
    signal: Optional[AbortSignal] = None,
) -> list[RateMeasurement]:
    """`repeats` back to back rate measurements on one channel."""
    if isinstance(repeats, bool) or not isinstance(repeats, int) or repeats < 1:
        raise ValidationError("repeats", repeats, "must be a positive integer")
    validate_channel(channel)
    validate_duration(duration)
    results = []
    for i in range(repeats):
        logger.debug("Rate series {}/{}", i + 1, repeats)
        results.append(await measure_rate(device, channel, duration, signal))
    return results


async def measure_coincidence_rate(
    device: CD48,
    duration: float = DEFAULT_MEASUREMENT_DURATION,
    singles_a_channel: int = DEFAULT_SINGLES_A_CHANNEL,
    singles_b_channel: int = DEFAULT_SINGLES_B_CHANNEL,
    coincidence_channel: int = DEFAULT_COINCIDENCE_CHANNEL,
    coincidence_window: float = COINCIDENCE_WINDOW,
    signal: Optional[AbortSignal] = None,
) -> CoincidenceMeasurement:
    """Singles on two channels plus their coincidence channel, one gate."""
    for ch in (singles_a_channel, singles_b_channel, coincidence_channel):
        validate_channel(ch)
    validate_duration(duration)
    if isinstance(coincidence_window, bool) or not isinstance(
        coincidence_window, (int, float)
    ) or not coincidence_window >= 0:
        raise ValidationError(
            "coincidence_window", coincidence_window, "must be a non-negative number"
        )
    if signal is not None:
        signal.raise_if_aborted("measure_coincidence_rate")

    data = await _gate(device, duration, signal)
    result = coincidence_from_counts(
        data.counts[int(singles_a_channel)],
        data.counts[int(singles_b_channel)],
        data.counts[int(coincidence_channel)],
        duration,
        coincidence_window,
    )
    logger.info(
        "Coincidences: {:.3f} /s measured, {:.3g} /s accidental, {:.3f} /s true",
        result.coincidence_rate,
        result.accidental_rate,
        result.true_coincidence_rate,
    )
    return result
