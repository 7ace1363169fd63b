"""
Exposure layers for the Hazard Exposure Assessment.
"""

from .raster_algebra import Raster
from .hazard_layer import HazardFusion
from .zonal_reducer import Zone, ZonalReducer, ZonalReduction
from .exposure_statistics import ExposureStatistics, ZoneStatistics
from .aggregation import (
    HierarchicalAggregator,
    ProvinceStatistics,
    NationalTotals,
    rank_provinces,
    rank_zones,
)
from .exposure_pipeline import ExposurePipeline, ExposureReport, ZoneFailure

__all__ = [
    'Raster',
    'HazardFusion',
    'Zone',
    'ZonalReducer',
    'ZonalReduction',
    'ExposureStatistics',
    'ZoneStatistics',
    'HierarchicalAggregator',
    'ProvinceStatistics',
    'NationalTotals',
    'rank_provinces',
    'rank_zones',
    'ExposurePipeline',
    'ExposureReport',
    'ZoneFailure',
]
