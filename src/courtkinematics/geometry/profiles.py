"""
Sport profiles: court geometry plus the tolerance bands and empirical
weighting coefficients used by calibration.

The weighting coefficients are tuned by hand per sport and have no
closed-form derivation; they are kept here as data so they can be
overridden from configuration.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from typing import Any

from .types import CourtDimensions

logger = logging.getLogger(__name__)


def _finite_positive(value: Any, fallback: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number) or number <= 0:
        return fallback
    return number


def _clamped(value: Any, fallback: float, lo: float, hi: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(number):
        return fallback
    return min(max(number, lo), hi)


@dataclass(frozen=True, slots=True)
class ValidationThresholds:
    """Reprojection-error bands (pixels) mapped to confidence."""

    excellent_error: float = 2.0
    acceptable_error: float = 5.0
    max_error: float = 15.0
    confidence_floor: float = 0.1

    def normalized(self) -> ValidationThresholds:
        default = ValidationThresholds()
        excellent = _finite_positive(self.excellent_error, default.excellent_error)
        acceptable = _finite_positive(self.acceptable_error, default.acceptable_error)
        max_error = _finite_positive(self.max_error, default.max_error)
        if not excellent < acceptable < max_error:
            logger.warning(
                "Threshold bands must be increasing (got %.3f/%.3f/%.3f); using defaults",
                excellent,
                acceptable,
                max_error,
            )
            excellent = default.excellent_error
            acceptable = default.acceptable_error
            max_error = default.max_error
        floor = _clamped(self.confidence_floor, default.confidence_floor, 0.0, 0.5)
        return ValidationThresholds(excellent, acceptable, max_error, floor)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ValidationThresholds:
        default = cls()
        return cls(
            excellent_error=data.get("excellentError", default.excellent_error),
            acceptable_error=data.get("acceptableError", default.acceptable_error),
            max_error=data.get("maxError", default.max_error),
            confidence_floor=data.get("confidenceFloor", default.confidence_floor),
        ).normalized()

    def as_dict(self) -> dict[str, float]:
        return {
            "excellentError": self.excellent_error,
            "acceptableError": self.acceptable_error,
            "maxError": self.max_error,
            "confidenceFloor": self.confidence_floor,
        }


@dataclass(frozen=True, slots=True)
class PerspectiveFactors:
    """
    Position-based weights for the weighted DLT.

    A correspondence near the frame edge is down-weighted by
    ``1 - edge_penalty * r**2`` (r: distance from the image center,
    normalized so a corner is 1). Correspondences high in the frame are
    assumed farther from the camera and blend from ``near_weight`` (bottom
    row) to ``far_weight`` (top row).
    """

    edge_penalty: float = 0.3
    near_weight: float = 1.0
    far_weight: float = 0.7
    min_weight: float = 0.1

    def normalized(self) -> PerspectiveFactors:
        default = PerspectiveFactors()
        return PerspectiveFactors(
            edge_penalty=_clamped(self.edge_penalty, default.edge_penalty, 0.0, 0.9),
            near_weight=_finite_positive(self.near_weight, default.near_weight),
            far_weight=_finite_positive(self.far_weight, default.far_weight),
            min_weight=_clamped(self.min_weight, default.min_weight, 1e-3, 1.0),
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PerspectiveFactors:
        default = cls()
        return cls(
            edge_penalty=data.get("edgePenalty", default.edge_penalty),
            near_weight=data.get("nearWeight", default.near_weight),
            far_weight=data.get("farWeight", default.far_weight),
            min_weight=data.get("minWeight", default.min_weight),
        ).normalized()

    def as_dict(self) -> dict[str, float]:
        return {
            "edgePenalty": self.edge_penalty,
            "nearWeight": self.near_weight,
            "farWeight": self.far_weight,
            "minWeight": self.min_weight,
        }


@dataclass(frozen=True, slots=True)
class SportProfile:
    type: str
    court_dimensions: CourtDimensions
    validation_thresholds: ValidationThresholds = field(default_factory=ValidationThresholds)
    perspective_factors: PerspectiveFactors = field(default_factory=PerspectiveFactors)
    player_height_cm: float = 170.0

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SportProfile:
        """Build a profile from the camelCase configuration surface.

        Unknown sports start from the badminton defaults; invalid numbers
        fall back to the base profile's values.
        """
        base = PROFILES.get(str(data.get("type", "")).lower(), BADMINTON)
        court = base.court_dimensions
        if "courtDimensions" in data:
            raw = data["courtDimensions"] or {}
            court = CourtDimensions(
                length_m=_finite_positive(raw.get("length"), court.length_m),
                width_m=_finite_positive(raw.get("width"), court.width_m),
            )
        thresholds = base.validation_thresholds
        if "validationThresholds" in data:
            thresholds = ValidationThresholds.from_dict(data["validationThresholds"] or {})
        factors = base.perspective_factors
        if "perspectiveFactors" in data:
            factors = PerspectiveFactors.from_dict(data["perspectiveFactors"] or {})
        return replace(
            base,
            type=str(data.get("type", base.type)),
            court_dimensions=court,
            validation_thresholds=thresholds,
            perspective_factors=factors,
            player_height_cm=_finite_positive(data.get("playerHeight"), base.player_height_cm),
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "courtDimensions": self.court_dimensions.as_dict(),
            "validationThresholds": self.validation_thresholds.as_dict(),
            "perspectiveFactors": self.perspective_factors.as_dict(),
            "playerHeight": self.player_height_cm,
        }


BADMINTON = SportProfile(
    type="badminton",
    court_dimensions=CourtDimensions(length_m=13.4, width_m=6.1),
    validation_thresholds=ValidationThresholds(
        excellent_error=2.0, acceptable_error=5.0, max_error=15.0
    ),
    perspective_factors=PerspectiveFactors(edge_penalty=0.3, near_weight=1.0, far_weight=0.7),
    player_height_cm=165.0,
)

# Singles court; the larger court tolerates wider error bands.
TENNIS = SportProfile(
    type="tennis",
    court_dimensions=CourtDimensions(length_m=23.77, width_m=8.23),
    validation_thresholds=ValidationThresholds(
        excellent_error=3.0, acceptable_error=8.0, max_error=20.0
    ),
    perspective_factors=PerspectiveFactors(edge_penalty=0.4, near_weight=1.0, far_weight=0.6),
    player_height_cm=180.0,
)

PROFILES: dict[str, SportProfile] = {
    BADMINTON.type: BADMINTON,
    TENNIS.type: TENNIS,
}


def get_profile(name: str) -> SportProfile:
    """Return a built-in profile; unknown names fall back to badminton."""
    profile = PROFILES.get(name.lower())
    if profile is None:
        logger.warning("Unknown sport profile %r; using badminton", name)
        return BADMINTON
    return profile
