"""Tests for HazardFusion: validity masking, multi-trigger maximum,
tier reclassification and the binary flood / coastal thresholds.
"""

import numpy as np
import pytest
from rasterio.transform import from_origin

from hazard_exposure.risk_layers.hazard_layer import HAZARD_BAND, HazardFusion
from hazard_exposure.utils.errors import ConfigurationError, InvalidRasterRange, RasterAlignmentError


def _levels(raster):
    band = raster.band(HAZARD_BAND)
    return band.filled(0).tolist()


class TestLandslideFusion:
    def test_fused_tiers(self, landslide_profile, make_raster):
        earthquake = make_raster([[1, 8], [0, 3]], band_name="earthquake")
        precipitation = make_raster([[2, 2], [5, 9]], band_name="precipitation")

        fused = HazardFusion(landslide_profile).fuse(
            {"earthquake": earthquake, "precipitation": precipitation}
        )

        # max(1,2)=2 -> Low, max(8,2)=8 -> Very High, only PR 5 -> High, only EQ 3 -> Medium
        assert _levels(fused) == [[1, 4], [3, 2]]
        assert fused.band_names == [HAZARD_BAND]

    def test_cell_invalid_in_every_trigger_is_no_data(self, landslide_profile, make_raster):
        earthquake = make_raster([[0, 4]], band_name="earthquake")
        precipitation = make_raster([[9, 1]], band_name="precipitation")

        fused = HazardFusion(landslide_profile).fuse([earthquake, precipitation])

        assert np.ma.getmaskarray(fused.band()).tolist() == [[True, False]]
        assert _levels(fused) == [[0, 2]]

    def test_max_combine_is_monotone(self, unit_bin_profile, make_raster):
        rng = np.random.default_rng(7)
        a = rng.integers(1, 5, size=(6, 6))
        b = rng.integers(1, 5, size=(6, 6))
        fusion = HazardFusion(unit_bin_profile)

        fused = fusion.fuse([make_raster(a), make_raster(b)]).band().filled(0)

        assert np.all(fused >= a)
        assert np.all(fused >= b)
        raised = fusion.fuse([make_raster(np.minimum(a + 1, 4)), make_raster(b)]).band().filled(0)
        assert np.all(raised >= fused)

    def test_single_valid_trigger_passes_through(self, unit_bin_profile, make_raster):
        a = make_raster([[3, 0]], nodata=0)
        b = make_raster([[0, 2]], nodata=0)

        fused = HazardFusion(unit_bin_profile).fuse([a, b])

        assert _levels(fused) == [[3, 2]]

    def test_unit_bins_are_identity(self, unit_bin_profile, make_raster):
        tiers = np.array([[1, 2], [3, 4]])

        fused = HazardFusion(unit_bin_profile).fuse([make_raster(tiers), make_raster(tiers)])

        assert _levels(fused) == tiers.tolist()

    def test_partial_coverage_is_valid(self, landslide_profile, make_raster):
        earthquake = make_raster([[0, 0], [0, 6]], band_name="earthquake")
        precipitation = make_raster([[1, 0], [0, 0]], band_name="precipitation")

        fused = HazardFusion(landslide_profile).fuse([earthquake, precipitation])

        assert fused.valid_count() == 2

    def test_trigger_without_valid_cells(self, landslide_profile, make_raster):
        earthquake = make_raster([[0, 0], [9, 10]], band_name="earthquake")
        precipitation = make_raster([[1, 2], [3, 4]], band_name="precipitation")

        with pytest.raises(InvalidRasterRange, match="earthquake") as excinfo:
            HazardFusion(landslide_profile).fuse([earthquake, precipitation])
        assert excinfo.value.trigger_name == "earthquake"

    def test_tier_selectors(self, landslide_profile, make_raster):
        fusion = HazardFusion(landslide_profile)
        fused = fusion.fuse([make_raster([[1, 3], [5, 7]]), make_raster([[1, 3], [5, 7]])])

        selectors = fusion.tier_selectors(fused)

        assert sorted(selectors) == [1, 2, 3, 4]
        assert selectors[3].filled(0).tolist() == [[0, 0], [1, 0]]


class TestTriggerValidation:
    def test_missing_trigger(self, landslide_profile, make_raster):
        with pytest.raises(ConfigurationError, match="precipitation"):
            HazardFusion(landslide_profile).fuse({"earthquake": make_raster([[1]])})

    def test_unknown_trigger(self, landslide_profile, make_raster):
        triggers = {"earthquake": make_raster([[1]]), "precipitation": make_raster([[1]]), "wind": make_raster([[1]])}
        with pytest.raises(ConfigurationError, match="wind"):
            HazardFusion(landslide_profile).fuse(triggers)

    def test_wrong_trigger_count(self, landslide_profile, make_raster):
        with pytest.raises(ConfigurationError):
            HazardFusion(landslide_profile).fuse([make_raster([[1]])])

    def test_misaligned_triggers(self, landslide_profile, make_raster):
        shifted = make_raster([[1, 2]], transform=from_origin(10, 100, 10, 10))
        with pytest.raises(RasterAlignmentError):
            HazardFusion(landslide_profile).fuse([make_raster([[1, 2]]), shifted])


class TestBinaryFusion:
    def test_flood_depth_above_zero(self, flood_profile, make_raster):
        depth = make_raster([[0.0, 0.5], [np.nan, 2.0]], band_name="flood_depth")

        fused = HazardFusion(flood_profile).fuse([depth])

        assert _levels(fused) == [[0, 1], [0, 1]]
        assert np.ma.getmaskarray(fused.band()).tolist() == [[True, False], [True, False]]
        assert fused.band().dtype == np.uint8

    def test_coastal_elevation_at_or_below_ten_metres(self, coastal_profile, make_raster):
        elevation = make_raster([[5.0, 10.0], [11.0, -9999.0]], nodata=-9999, band_name="elevation")

        fused = HazardFusion(coastal_profile).fuse({"elevation": elevation})

        assert _levels(fused) == [[1, 1], [0, 0]]

    def test_raster_of_only_no_data(self, flood_profile, make_raster):
        with pytest.raises(InvalidRasterRange):
            HazardFusion(flood_profile).fuse([make_raster([[np.nan, np.nan]])])
