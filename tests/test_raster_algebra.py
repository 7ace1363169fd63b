"""Tests for the masked-array raster algebra primitives.

Covers no-data masking, range masking, thresholds, cell-wise maximum,
reclassification and grid alignment checks.
"""

import numpy as np
import pytest
from rasterio.transform import from_origin

from hazard_exposure.config.config import equal_width_bins
from hazard_exposure.risk_layers.raster_algebra import (
    Raster,
    as_band,
    check_alignment,
    divide,
    equals,
    mask_range,
    max_combine,
    multiply,
    reclassify,
    stack,
    threshold,
    update_mask,
)
from hazard_exposure.utils.errors import ConfigurationError, RasterAlignmentError


def _band(values, mask=None):
    data = np.asarray(values, dtype=np.float64)
    return np.ma.masked_array(data, mask=np.zeros(data.shape, bool) if mask is None else mask)


class TestAsBand:
    def test_nodata_and_nan_are_masked(self):
        band = as_band(np.array([[1.0, np.nan], [-9999.0, 3.0]]), nodata=-9999)
        assert np.ma.getmaskarray(band).tolist() == [[False, True], [True, False]]

    def test_input_is_copied(self):
        data = np.array([[1.0, 2.0]])
        band = as_band(data)
        band[0, 0] = 5.0
        assert data[0, 0] == 1.0

    def test_integer_band_without_nodata_is_fully_valid(self):
        band = as_band(np.array([[1, 2], [3, 4]], dtype=np.uint8))
        assert np.ma.count(band) == 4


class TestRaster:
    def test_grid_properties(self, make_raster):
        raster = make_raster(np.ones((3, 4)))
        assert raster.shape == (3, 4)
        assert raster.resolution == (10.0, 10.0)
        assert raster.cell_area == 100.0
        assert raster.band_names == ["band_1"]

    def test_bands_must_share_shape(self):
        transform = from_origin(0, 100, 10, 10)
        with pytest.raises(RasterAlignmentError):
            Raster({"a": _band(np.ones((2, 2))), "b": _band(np.ones((3, 3)))}, transform)

    def test_multi_band_needs_band_name(self):
        transform = from_origin(0, 100, 10, 10)
        raster = stack({"a": _band(np.ones((2, 2))), "b": _band(np.zeros((2, 2)))}, transform)
        with pytest.raises(KeyError):
            raster.band()
        assert raster.band("b").sum() == 0

    def test_valid_count(self, make_raster):
        raster = make_raster([[1.0, -1.0], [2.0, -1.0]], nodata=-1)
        assert raster.valid_count() == 2


class TestMaskRange:
    def test_closed_range_is_kept(self):
        band = mask_range(_band([[0, 1], [8, 9]]), 1, 8)
        assert np.ma.getmaskarray(band).tolist() == [[True, False], [False, True]]

    def test_existing_mask_is_preserved(self):
        band = mask_range(_band([[2, 3]], mask=[[True, False]]), 1, 8)
        assert np.ma.getmaskarray(band).tolist() == [[True, False]]

    def test_input_is_not_modified(self):
        source = _band([[0, 5]])
        mask_range(source, 1, 8)
        assert np.ma.count(source) == 2


class TestThreshold:
    def test_selector_is_one_where_comparison_holds(self):
        band = _band([[0.0, 0.5], [3.0, 2.0]], mask=[[False, False], [True, False]])
        selector = threshold(band, "gt", 0)
        assert selector.filled(0).tolist() == [[0, 1], [0, 1]]
        assert np.ma.getmaskarray(selector).tolist() == [[True, False], [True, False]]

    def test_lte_includes_the_boundary(self):
        selector = threshold(_band([[5.0, 10.0, 11.0]]), "lte", 10)
        assert selector.filled(0).tolist() == [[1, 1, 0]]

    def test_equals_selects_one_tier(self):
        selector = equals(_band([[1, 2, 2, 3]]), 2)
        assert selector.filled(0).tolist() == [[0, 1, 1, 0]]

    def test_unknown_operator(self):
        with pytest.raises(ConfigurationError):
            threshold(_band([[1.0]]), "between", 0)


class TestMaxCombine:
    def test_maximum_over_valid_triggers(self):
        a = _band([[1, 7], [4, 5]], mask=[[False, True], [True, False]])
        b = _band([[3, 2], [6, 4]], mask=[[False, False], [True, False]])
        combined = max_combine([a, b])
        assert combined.filled(0).tolist() == [[3, 2], [0, 5]]
        assert np.ma.getmaskarray(combined).tolist() == [[False, False], [True, False]]

    def test_single_band_is_returned_unchanged(self):
        a = _band([[1, 2]], mask=[[False, True]])
        combined = max_combine([a])
        assert combined.filled(0).tolist() == [[1, 0]]
        assert np.ma.getmaskarray(combined).tolist() == [[False, True]]

    def test_empty_input(self):
        with pytest.raises(ValueError):
            max_combine([])


class TestReclassify:
    def test_equal_width_landslide_bins(self):
        bins = equal_width_bins(1, 8, 4)
        tiers = reclassify(_band([[1, 2, 3, 4], [5, 6, 7, 8]]), bins)
        assert tiers.tolist() == [[1, 1, 2, 2], [3, 3, 4, 4]]
        assert tiers.dtype == np.uint8

    def test_values_between_bins_become_no_data(self):
        bins = equal_width_bins(1, 8, 4)
        tiers = reclassify(_band([[2.5, 3.0]]), bins)
        assert np.ma.getmaskarray(tiers).tolist() == [[True, False]]

    def test_masked_cells_stay_masked(self):
        bins = equal_width_bins(1, 8, 4)
        tiers = reclassify(_band([[1, 8]], mask=[[False, True]]), bins)
        assert np.ma.getmaskarray(tiers).tolist() == [[False, True]]


class TestMaskingAndDivision:
    def test_update_mask_keeps_selected_cells(self):
        population = _band([[10.0, 20.0], [30.0, 40.0]])
        selector = _band([[1, 0], [1, 1]], mask=[[False, False], [False, True]])
        kept = update_mask(population, selector)
        assert kept.compressed().tolist() == [10.0, 30.0]

    def test_multiply_propagates_no_data(self):
        result = multiply(_band([[2.0, 3.0]], mask=[[False, True]]), _band([[4.0, 5.0]]))
        assert result.filled(0).tolist() == [[8.0, 0.0]]

    def test_divide_by_zero_is_no_data(self):
        result = divide(_band([[1.0, 2.0]]), _band([[0.0, 4.0]]))
        assert np.ma.getmaskarray(result).tolist() == [[True, False]]
        assert result[0, 1] == pytest.approx(0.5)


class TestAlignment:
    def test_aligned_rasters_pass(self, make_raster):
        check_alignment({"a": make_raster(np.ones((2, 2))), "b": make_raster(np.zeros((2, 2)))})

    def test_shifted_grid_is_rejected(self, make_raster):
        shifted = make_raster(np.ones((2, 2)), transform=from_origin(5, 100, 10, 10))
        with pytest.raises(RasterAlignmentError, match="'b'"):
            check_alignment({"a": make_raster(np.ones((2, 2))), "b": shifted})

    def test_shape_mismatch_is_rejected(self, make_raster):
        with pytest.raises(RasterAlignmentError):
            check_alignment({"a": make_raster(np.ones((2, 2))), "b": make_raster(np.ones((3, 2)))})
