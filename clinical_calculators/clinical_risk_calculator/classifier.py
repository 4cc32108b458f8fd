"""Threshold classification of scores and risk estimates."""

from typing import Sequence

from clinical_calculators.clinical_risk_calculator.models import ThresholdBand


def classify(bands: Sequence[ThresholdBand], value: float) -> str:
    """Map a value to the category of the band containing it.

    Bands are half-open ``[low, high)``, scanned in ascending order; the last
    band has no upper bound.

    Raises:
        ValueError: If ``value`` lies below the first band or is NaN
    """
    if not bands:
        raise ValueError("No threshold bands to classify against")
    if not value >= bands[0].low:
        raise ValueError(f"Value {value} lies below the first band ({bands[0].low})")

    for band in bands:
        if band.high is None or value < band.high:
            return band.category
    raise ValueError(f"Value {value} lies above the last band")
