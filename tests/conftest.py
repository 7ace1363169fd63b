"""Shared fixtures: synthetic rasters on a 10 x 10 grid of 10 m cells and box zones.

The grid covers x in [0, 100] and y in [0, 100]; cell (row, col) has its
centre at (col * 10 + 5, 95 - row * 10).
"""

import os
import tempfile

os.environ.setdefault(
    "HAZARD_EXPOSURE_LOG_DIR", os.path.join(tempfile.gettempdir(), "hazard_exposure_test_logs")
)

from dataclasses import replace

import numpy as np
import pytest
from rasterio.transform import from_origin

from hazard_exposure.config.config import HazardProfile, ProcessingSettings, ProjectConfig, TierBin
from hazard_exposure.risk_layers.raster_algebra import Raster

CELL = 10.0
CRS = "EPSG:32755"
TRANSFORM = from_origin(0, 100, CELL, CELL)


def _make_raster(data, band_name="band_1", nodata=None, transform=TRANSFORM, crs=CRS) -> Raster:
    return Raster.from_array(np.asarray(data), transform, crs=crs, band_name=band_name, nodata=nodata)


@pytest.fixture
def make_raster():
    """Factory for single-band rasters on the shared test grid."""
    return _make_raster


@pytest.fixture(scope="session")
def config() -> ProjectConfig:
    return ProjectConfig()


@pytest.fixture
def landslide_profile(config) -> HazardProfile:
    """Packaged landslide profile sampled at the native 10 m cell size."""
    return replace(config.profile("landslide"), resolution=CELL)


@pytest.fixture
def flood_profile(config) -> HazardProfile:
    return replace(config.profile("flood"), resolution=CELL)


@pytest.fixture
def coastal_profile(config) -> HazardProfile:
    return replace(config.profile("coastal"), resolution=CELL)


@pytest.fixture
def unit_bin_profile() -> HazardProfile:
    """Four-tier profile whose bins have width 1, so tier values map onto themselves."""
    return HazardProfile(
        name="unit",
        mode="tiered",
        resolution=CELL,
        trigger_names=("a", "b"),
        tier_labels=("Low", "Medium", "High", "Very High"),
        tier_weights=(1, 2, 3, 4),
        bins=tuple(TierBin(min=i, max=i, tier=i) for i in range(1, 5)),
        valid_range=(1, 4),
    )


@pytest.fixture
def sequential_settings() -> ProcessingSettings:
    return ProcessingSettings(max_workers=1)


@pytest.fixture
def landslide_data_section() -> dict:
    """Minimal parsed 'data' section with one valid tiered hazard."""
    return {
        "processing": {"max_pixels": 1000, "tile_size": 16, "best_effort": True, "max_workers": 2},
        "hazards": {
            "landslide": {
                "mode": "tiered",
                "resolution": 100,
                "triggers": ["earthquake", "precipitation"],
                "valid_range": [1, 8],
                "tiers": [
                    {"label": "Low", "min": 1, "max": 2, "weight": 1},
                    {"label": "Medium", "min": 3, "max": 4, "weight": 2},
                    {"label": "High", "min": 5, "max": 6, "weight": 3},
                    {"label": "Very High", "min": 7, "max": 8, "weight": 4},
                ],
            }
        },
    }
