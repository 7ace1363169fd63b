"""
Hazard Exposure utils package.
"""

from .utils import setup_logging, suppress_warnings
from .errors import (
    HazardExposureError,
    ConfigurationError,
    InvalidRasterRange,
    RasterAlignmentError,
    ZoneReductionFailure,
    EmptyGroupError,
)

__all__ = [
    'setup_logging',
    'suppress_warnings',
    'HazardExposureError',
    'ConfigurationError',
    'InvalidRasterRange',
    'RasterAlignmentError',
    'ZoneReductionFailure',
    'EmptyGroupError',
]
