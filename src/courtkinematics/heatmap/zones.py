"""
Named court zones on normalized court coordinates.

x runs across the court width (left/center/right thirds) and y along its
length from the near baseline (front 0-0.5, mid 0.5-0.7, back 0.7-1).
Bins are half-open except for the far edge, so every point in [0, 1]^2
falls in exactly one zone; anything else is out of bounds.
"""

OUT_OF_BOUNDS = "out-of-bounds"

_X_BINS = (("left", 0.0, 0.33), ("center", 0.33, 0.67), ("right", 0.67, 1.0))
_Y_BINS = (("front", 0.0, 0.5), ("mid", 0.5, 0.7), ("back", 0.7, 1.0))

COURT_ZONES: dict[str, tuple[tuple[float, float], tuple[float, float]]] = {
    f"{y_name}-{x_name}": ((x_lo, x_hi), (y_lo, y_hi))
    for y_name, y_lo, y_hi in _Y_BINS
    for x_name, x_lo, x_hi in _X_BINS
}


def _bin(value: float, bins: tuple[tuple[str, float, float], ...]) -> str | None:
    for name, lo, hi in bins:
        if lo <= value < hi:
            return name
    if value == bins[-1][2]:
        return bins[-1][0]
    return None


def classify_normalized(x: float, y: float) -> str:
    """Zone for a position normalized to the court (0..1 on both axes)."""
    x_name = _bin(x, _X_BINS)
    y_name = _bin(y, _Y_BINS)
    if x_name is None or y_name is None:
        return OUT_OF_BOUNDS
    return f"{y_name}-{x_name}"
