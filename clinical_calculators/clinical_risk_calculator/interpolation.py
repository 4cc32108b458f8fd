"""Piecewise-linear lookup over ordered (score, outcome) knots."""

from bisect import bisect_right
from typing import Sequence

from clinical_calculators.clinical_risk_calculator.models import InterpolationTable


def interpolate(table: InterpolationTable | Sequence[tuple[float, float]], x: float) -> float:
    """Interpolate an outcome for ``x``.

    Knot scores return their exact outcome, values between two knots are
    linear in x, and values outside the table are clamped to the end knots.

    Args:
        table: InterpolationTable or sequence of knots sorted ascending by score
        x: Score to look up

    Returns:
        Interpolated outcome value
    """
    knots = table.knots if isinstance(table, InterpolationTable) else tuple(table)
    if not knots:
        raise ValueError("Cannot interpolate over an empty table")

    if x <= knots[0][0]:
        return knots[0][1]
    if x >= knots[-1][0]:
        return knots[-1][1]

    scores = [score for score, _ in knots]
    idx = bisect_right(scores, x)
    x0, y0 = knots[idx - 1]
    x1, y1 = knots[idx]
    if x == x0:
        return y0
    return y0 + (x - x0) * (y1 - y0) / (x1 - x0)
