from .calibration import (
    CalibrationSession,
    CalibrationSnapshot,
    load_calibration,
    save_calibration,
)
from .camera import DecomposerConfig, HomographyDecomposer, rotation_to_euler
from .homography import Homography, HomographyEstimator, build_design_matrix
from .profiles import (
    BADMINTON,
    PROFILES,
    TENNIS,
    PerspectiveFactors,
    SportProfile,
    ValidationThresholds,
    get_profile,
)
from .transform import CoordinateTransformer
from .types import (
    CalibrationError,
    CalibrationPoint,
    CameraParams,
    CourtCoordinateSystem,
    CourtDimensions,
    EulerAngles,
    GeometryError,
    LineCorrespondence,
    Point2D,
    Point3D,
    ValidationMetrics,
)
from .validation import CalibrationValidator, quality_grade

__all__ = [
    # types
    "Point2D",
    "Point3D",
    "CalibrationPoint",
    "LineCorrespondence",
    "CourtDimensions",
    "CourtCoordinateSystem",
    "EulerAngles",
    "CameraParams",
    "ValidationMetrics",
    "GeometryError",
    "CalibrationError",
    # profiles
    "SportProfile",
    "ValidationThresholds",
    "PerspectiveFactors",
    "BADMINTON",
    "TENNIS",
    "PROFILES",
    "get_profile",
    # estimation
    "Homography",
    "HomographyEstimator",
    "build_design_matrix",
    "HomographyDecomposer",
    "DecomposerConfig",
    "rotation_to_euler",
    "CalibrationValidator",
    "quality_grade",
    "CoordinateTransformer",
    # calibration
    "CalibrationSession",
    "CalibrationSnapshot",
    "load_calibration",
    "save_calibration",
]
