"""
Exception hierarchy for the hazard exposure engine.

Configuration and input errors are raised before any raster computation
starts. Zone reduction failures are raised per zone and are isolated by the
pipeline so one degenerate geometry never voids a whole run.
"""

from typing import Optional


class HazardExposureError(Exception):
    """Base class for all errors raised by the engine."""


class ConfigurationError(HazardExposureError, ValueError):
    """Tier bins, weights, thresholds or processing parameters are missing or inconsistent."""


class InvalidRasterRange(HazardExposureError, ValueError):
    """A hazard trigger raster has no valid cell at all inside the study region."""

    def __init__(self, trigger_name: str, lo: Optional[float] = None, hi: Optional[float] = None):
        self.trigger_name = trigger_name
        self.lo = lo
        self.hi = hi
        if lo is not None and hi is not None:
            message = f"Hazard raster '{trigger_name}' has no valid cells in range [{lo}, {hi}]"
        else:
            message = f"Hazard raster '{trigger_name}' has no valid cells"
        super().__init__(message)


class RasterAlignmentError(HazardExposureError, ValueError):
    """Rasters that must be combined cell by cell do not share one grid."""


class ZoneReductionFailure(HazardExposureError, RuntimeError):
    """A zone could not be reduced within the resource bounds."""

    def __init__(self, zone_id: str, reason: str):
        self.zone_id = zone_id
        self.reason = reason
        super().__init__(f"Reduction failed for zone '{zone_id}': {reason}")


class EmptyGroupError(HazardExposureError, AssertionError):
    """A parent zone derived from the zone data has no member rows (internal invariant)."""
