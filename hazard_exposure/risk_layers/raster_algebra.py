"""
Raster Algebra
==============

Elementwise operations on gridded layers that share one spatial grid.

Bands are numpy masked arrays: the mask marks "no data" cells, which are
excluded from every combination and reduction. All operations return new
arrays and never modify their inputs, so a Raster is immutable once built.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
import numpy as np
import rasterio
from rasterio.crs import CRS

from hazard_exposure.config.config import THRESHOLD_OPERATORS, TierBin
from hazard_exposure.utils.errors import ConfigurationError, RasterAlignmentError


Band = np.ma.MaskedArray

COMPARISON_OPERATORS = dict(
    zip(
        THRESHOLD_OPERATORS,
        (np.greater, np.greater_equal, np.less, np.less_equal, np.equal),
    )
)


def as_band(data, nodata: Optional[float] = None) -> Band:
    """Wrap an array as a masked band, masking the nodata value and NaN cells."""
    if isinstance(data, np.ma.MaskedArray):
        band = np.ma.array(data, copy=True)
    else:
        band = np.ma.array(np.asarray(data), copy=True)
    if np.issubdtype(band.dtype, np.floating):
        band = np.ma.masked_invalid(band)
    if nodata is not None:
        if np.isnan(nodata):
            band = np.ma.masked_invalid(band)
        else:
            band = np.ma.masked_where(band.filled(nodata) == nodata, band)
    band.mask = np.ma.getmaskarray(band)
    return band


@dataclass(frozen=True, eq=False)
class Raster:
    """
    A gridded layer of one or more named bands over a fixed grid.

    Attributes:
        bands: Mapping of band name to masked array, all with the same 2-D shape
        transform: Affine transform of the grid (rasterio convention)
        crs: Coordinate reference system, optional for synthetic data
    """

    bands: Mapping[str, Band]
    transform: rasterio.Affine
    crs: Optional[CRS] = None
    _shape: Tuple[int, int] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        if not self.bands:
            raise ValueError("A raster needs at least one band")
        shapes = {np.shape(band) for band in self.bands.values()}
        if len(shapes) != 1:
            raise RasterAlignmentError(f"Bands have different shapes: {sorted(shapes)}")
        shape = shapes.pop()
        if len(shape) != 2:
            raise ValueError(f"Bands must be 2-D, got shape {shape}")
        object.__setattr__(self, "bands", dict(self.bands))
        object.__setattr__(self, "_shape", shape)

    @classmethod
    def from_array(
        cls,
        data,
        transform: rasterio.Affine,
        crs: Optional[Union[CRS, str]] = None,
        band_name: str = "band_1",
        nodata: Optional[float] = None,
    ) -> "Raster":
        if isinstance(crs, str):
            crs = CRS.from_string(crs)
        return cls({band_name: as_band(data, nodata)}, transform, crs)

    @property
    def shape(self) -> Tuple[int, int]:
        return self._shape

    @property
    def band_names(self) -> List[str]:
        return list(self.bands.keys())

    @property
    def resolution(self) -> Tuple[float, float]:
        """Cell width and height in CRS units."""
        return abs(self.transform.a), abs(self.transform.e)

    @property
    def cell_area(self) -> float:
        width, height = self.resolution
        return width * height

    def band(self, name: Optional[str] = None) -> Band:
        if name is None:
            if len(self.bands) != 1:
                raise KeyError("Band name required for a multi-band raster")
            return next(iter(self.bands.values()))
        return self.bands[name]

    def valid_count(self, name: Optional[str] = None) -> int:
        return int(np.ma.count(self.band(name)))

    def same_grid(self, other: "Raster") -> bool:
        return (
            self.shape == other.shape
            and np.allclose(tuple(self.transform)[:6], tuple(other.transform)[:6])
            and (self.crs is None or other.crs is None or self.crs == other.crs)
        )

    def with_bands(self, bands: Mapping[str, Band]) -> "Raster":
        return Raster(bands, self.transform, self.crs)


def mask_range(band: Band, lo: float, hi: float) -> Band:
    """Keep cells inside the closed range [lo, hi]; everything else becomes no data."""
    outside = (band.filled(lo - 1) < lo) | (band.filled(hi + 1) > hi)
    return np.ma.masked_where(outside | np.ma.getmaskarray(band), band, copy=True)


def threshold(band: Band, operator: str, value: float) -> Band:
    """
    Binary selector: 1 where ``band <operator> value`` holds, no data elsewhere.

    Cells where the comparison fails are masked rather than set to 0, so the
    result can be used directly as an exposure mask.
    """
    if operator not in COMPARISON_OPERATORS:
        raise ConfigurationError(
            f"Unsupported threshold operator '{operator}'. Must be one of: {list(COMPARISON_OPERATORS)}"
        )
    mask = np.ma.getmaskarray(band)
    holds = COMPARISON_OPERATORS[operator](band.filled(0), value) & ~mask
    return np.ma.masked_array(np.ones(band.shape, dtype=np.uint8), mask=~holds)


def equals(band: Band, value: float) -> Band:
    """Binary selector for the cells equal to one tier value."""
    return threshold(band, "eq", value)


def max_combine(bands: Sequence[Band]) -> Band:
    """
    Cell-wise maximum over whichever bands are valid at each cell.

    A cell valid in a single band takes that band's value; a cell invalid in
    every band stays no data.
    """
    if not bands:
        raise ValueError("max_combine needs at least one band")
    shape = np.shape(bands[0])
    stacked = np.ma.stack([np.ma.array(band) for band in bands])
    if stacked.shape[1:] != shape:
        raise RasterAlignmentError("Cannot combine bands with different shapes")
    combined = stacked.max(axis=0)
    combined = np.ma.array(combined, mask=np.ma.getmaskarray(stacked).all(axis=0))
    return combined


def reclassify(band: Band, bins: Iterable[TierBin], dtype=np.uint8) -> Band:
    """
    Map source values onto tiers with inclusive [min, max] bins.

    Bins are applied in ascending order. Valid cells that fall in no bin become
    no data.
    """
    data = np.ma.array(band, dtype=np.float64).filled(np.nan)
    out = np.zeros(band.shape, dtype=dtype)
    classified = np.zeros(band.shape, dtype=bool)
    for tier_bin in sorted(bins, key=lambda b: b.min):
        hit = (data >= tier_bin.min) & (data <= tier_bin.max) & ~classified
        out[hit] = tier_bin.tier
        classified |= hit
    return np.ma.masked_array(out, mask=~classified | np.ma.getmaskarray(band))


def update_mask(band: Band, selector: Band) -> Band:
    """Keep ``band`` only where ``selector`` is valid and non-zero."""
    keep = ~np.ma.getmaskarray(selector) & (selector.filled(0) != 0)
    return np.ma.masked_where(~keep | np.ma.getmaskarray(band), band, copy=True)


def multiply(a: Band, b: Band) -> Band:
    return np.ma.multiply(a, b)


def divide(a: Band, b: Band) -> Band:
    """Elementwise division; a zero divisor yields no data."""
    b_filled = np.ma.array(b, dtype=np.float64)
    zero = b_filled.filled(0) == 0
    safe = np.ma.masked_where(zero | np.ma.getmaskarray(b_filled), b_filled)
    result = np.ma.divide(np.ma.array(a, dtype=np.float64), safe)
    return np.ma.array(result, mask=np.ma.getmaskarray(result) | zero)


def stack(
    bands: Mapping[str, Band], transform: rasterio.Affine, crs: Optional[CRS] = None
) -> Raster:
    """Pack several single-band layers into one multi-band raster."""
    return Raster(dict(bands), transform, crs)


def check_alignment(rasters: Dict[str, Raster]) -> None:
    """Raise RasterAlignmentError unless every raster shares the first raster's grid."""
    names = list(rasters)
    if not names:
        return
    reference = rasters[names[0]]
    for name in names[1:]:
        if not reference.same_grid(rasters[name]):
            raise RasterAlignmentError(
                f"Raster '{name}' is not aligned with '{names[0]}' "
                f"(shape {rasters[name].shape} vs {reference.shape})"
            )
