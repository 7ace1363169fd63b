"""
Configuration for the Hazard Exposure Assessment.
"""

from .config import (
    ProjectConfig,
    HazardProfile,
    ProcessingSettings,
    ZoneSettings,
    Threshold,
    TierBin,
    equal_width_bins,
)

__all__ = [
    'ProjectConfig',
    'HazardProfile',
    'ProcessingSettings',
    'ZoneSettings',
    'Threshold',
    'TierBin',
    'equal_width_bins',
]
