"""
Zonal Reducer
=============

Sums every band of a (multi-band) raster over one zone polygon in a single
pass. Callers pack the total population band, one masked population band per
hazard tier and any count bands into one raster, so each zone costs exactly one
reduction however many tiers the hazard has.

Reduction rules:
- A cell contributes when its centre lies inside the polygon and the cell is
  valid (not no data) in that band.
- The sum is taken on a sampling grid whose cell size is ``resolution``, an
  integer multiple of the native cell size; native cells are block-summed onto
  the sampling grid first so totals are preserved.
- The zone window is processed in square tiles of ``tile_size`` sampling cells
  to bound peak memory.
- A band without any contributing cell is reported as None (absent), never 0.
- If the window exceeds ``max_pixels`` sampling cells, strict mode fails the
  zone; best-effort mode doubles the sampling scale until the window fits and
  flags the result as approximate.
"""

from dataclasses import dataclass, field
import math
from typing import Dict, List, Optional, Tuple

import numpy as np
import rasterio
import rasterio.features
from shapely.geometry.base import BaseGeometry

from hazard_exposure.config.config import ProcessingSettings
from hazard_exposure.risk_layers.raster_algebra import Band, Raster
from hazard_exposure.utils.errors import ConfigurationError, ZoneReductionFailure
from hazard_exposure.utils.utils import setup_logging

logger = setup_logging(__name__)


@dataclass(frozen=True)
class Zone:
    """
    A named administrative polygon.

    Attributes:
        zone_id: Stable unique identifier
        geometry: Polygon or multipolygon in the raster CRS
        parent_id: Name of the parent zone (province); None for top-level zones
        name: Display name, defaults to the identifier
    """

    zone_id: str
    geometry: BaseGeometry
    parent_id: Optional[str] = None
    name: Optional[str] = None

    @property
    def display_name(self) -> str:
        return self.name or self.zone_id


@dataclass(frozen=True)
class ZonalReduction:
    """
    Result of one zone reduction.

    Attributes:
        zone_id: Identifier of the reduced zone
        values: Band name -> sum, or None when no valid cell contributed
        approximate: True when best-effort coarsening changed the sampling scale
        scale: Sampling cell size actually used
        pixel_count: Number of sampling cells in the zone window
    """

    zone_id: str
    values: Dict[str, Optional[float]] = field(default_factory=dict)
    approximate: bool = False
    scale: float = 0.0
    pixel_count: int = 0


def block_sum(band: Band, factor: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Aggregate native cells onto a grid ``factor`` times coarser.

    Returns:
        Tuple of (sum of valid native cells per coarse cell, coarse cell has at
        least one valid native cell)
    """
    data = np.ma.array(band, dtype=np.float64).filled(0.0)
    valid = ~np.ma.getmaskarray(band)
    if factor == 1:
        return data, valid

    pad_rows = (-data.shape[0]) % factor
    pad_cols = (-data.shape[1]) % factor
    if pad_rows or pad_cols:
        data = np.pad(data, ((0, pad_rows), (0, pad_cols)))
        valid = np.pad(valid, ((0, pad_rows), (0, pad_cols)), constant_values=False)

    rows, cols = data.shape[0] // factor, data.shape[1] // factor
    sums = data.reshape(rows, factor, cols, factor).sum(axis=(1, 3))
    any_valid = valid.reshape(rows, factor, cols, factor).any(axis=(1, 3))
    return sums, any_valid


class ZonalReducer:
    """
    Multi-band spatial sum over zone polygons.

    The reducer is stateless apart from its settings, so one instance can be
    shared by every worker of a parallel zone map.
    """

    def __init__(self, settings: Optional[ProcessingSettings] = None):
        self.settings = settings or ProcessingSettings()

    @staticmethod
    def scale_factor(raster: Raster, resolution: Optional[float]) -> int:
        """
        Number of native cells per sampling cell along each axis.

        Raises:
            ConfigurationError: If resolution is not a positive integer multiple
                of the native cell size
        """
        if resolution is None:
            return 1
        native_width, native_height = raster.resolution
        factors = []
        for native in (native_width, native_height):
            ratio = resolution / native
            factor = int(round(ratio))
            if factor < 1 or not math.isclose(ratio, factor, rel_tol=1e-6):
                raise ConfigurationError(
                    f"Sampling resolution {resolution} is not an integer multiple of the "
                    f"native cell size {native_width} x {native_height}"
                )
            factors.append(factor)
        if factors[0] != factors[1]:
            raise ConfigurationError(
                f"Sampling resolution {resolution} gives different factors per axis: {factors}"
            )
        return factors[0]

    def reduce(
        self,
        raster: Raster,
        zone: Zone,
        resolution: Optional[float] = None,
        best_effort: Optional[bool] = None,
    ) -> ZonalReduction:
        """
        Sum every band of ``raster`` over ``zone``.

        Args:
            raster: Multi-band raster; all bands are reduced together
            zone: Zone whose polygon bounds the reduction
            resolution: Sampling cell size, defaults to the native cell size
            best_effort: Override of the configured best-effort switch

        Returns:
            ZonalReduction with one entry per band

        Raises:
            ZoneReductionFailure: If the zone exceeds the pixel budget in strict
                mode, or no sampling scale fits the budget in best-effort mode
        """
        best_effort = self.settings.best_effort if best_effort is None else best_effort
        factor = self.scale_factor(raster, resolution)
        native_scale = raster.resolution[0]
        absent = {name: None for name in raster.band_names}

        geometry = zone.geometry
        if geometry is None or geometry.is_empty:
            logger.warning(f"Zone '{zone.zone_id}' has an empty geometry")
            return ZonalReduction(zone.zone_id, absent, scale=native_scale * factor)

        window = self._zone_window(raster, geometry, factor)
        if window is None:
            logger.debug(f"Zone '{zone.zone_id}' does not intersect the raster")
            return ZonalReduction(zone.zone_id, absent, scale=native_scale * factor)

        approximate = False
        pixel_count = self._window_pixels(window, factor)
        while pixel_count > self.settings.max_pixels:
            if not best_effort:
                raise ZoneReductionFailure(
                    zone.zone_id,
                    f"{pixel_count} pixels at scale {native_scale * factor} exceed max_pixels "
                    f"{self.settings.max_pixels:.0f}",
                )
            if factor > max(raster.shape):
                raise ZoneReductionFailure(
                    zone.zone_id, "no sampling scale fits the pixel budget"
                )
            factor *= 2
            approximate = True
            window = self._zone_window(raster, geometry, factor)
            pixel_count = self._window_pixels(window, factor)

        if approximate:
            logger.warning(
                f"Zone '{zone.zone_id}' reduced best-effort at scale {native_scale * factor} "
                f"({pixel_count} pixels)"
            )

        values = self._reduce_window(raster, geometry, window, factor)
        return ZonalReduction(
            zone_id=zone.zone_id,
            values=values,
            approximate=approximate,
            scale=native_scale * factor,
            pixel_count=pixel_count,
        )

    @staticmethod
    def _zone_window(
        raster: Raster, geometry: BaseGeometry, factor: int
    ) -> Optional[Tuple[int, int, int, int]]:
        """Native pixel window (row0, row1, col0, col1) of the geometry, aligned to the sampling grid."""
        height, width = raster.shape
        minx, miny, maxx, maxy = geometry.bounds
        inverse = ~raster.transform
        corners = [inverse * (x, y) for x in (minx, maxx) for y in (miny, maxy)]
        cols = [c for c, _ in corners]
        rows = [r for _, r in corners]

        row0 = max(int(math.floor(min(rows))), 0)
        col0 = max(int(math.floor(min(cols))), 0)
        row1 = min(int(math.ceil(max(rows))), height)
        col1 = min(int(math.ceil(max(cols))), width)
        if row1 <= row0 or col1 <= col0:
            return None

        # Snap to the sampling grid anchored at the raster origin; the end is
        # extended so every sampling cell sums all of its native cells
        row0 -= row0 % factor
        col0 -= col0 % factor
        row1 = min(row0 + math.ceil((row1 - row0) / factor) * factor, height)
        col1 = min(col0 + math.ceil((col1 - col0) / factor) * factor, width)
        return row0, row1, col0, col1

    @staticmethod
    def _window_pixels(window: Tuple[int, int, int, int], factor: int) -> int:
        row0, row1, col0, col1 = window
        return math.ceil((row1 - row0) / factor) * math.ceil((col1 - col0) / factor)

    def _reduce_window(
        self,
        raster: Raster,
        geometry: BaseGeometry,
        window: Tuple[int, int, int, int],
        factor: int,
    ) -> Dict[str, Optional[float]]:
        row0, row1, col0, col1 = window
        step = self.settings.tile_size * factor
        partials: Dict[str, List[float]] = {name: [] for name in raster.band_names}
        found = {name: False for name in raster.band_names}

        for tile_row in range(row0, row1, step):
            for tile_col in range(col0, col1, step):
                r1 = min(tile_row + step, row1)
                c1 = min(tile_col + step, col1)
                out_shape = (math.ceil((r1 - tile_row) / factor), math.ceil((c1 - tile_col) / factor))
                tile_transform = (
                    raster.transform
                    * rasterio.Affine.translation(tile_col, tile_row)
                    * rasterio.Affine.scale(factor)
                )
                inside = rasterio.features.geometry_mask(
                    [geometry],
                    out_shape=out_shape,
                    transform=tile_transform,
                    all_touched=False,
                    invert=True,
                )
                if not inside.any():
                    continue

                for name, band in raster.bands.items():
                    sums, valid = block_sum(band[tile_row:r1, tile_col:c1], factor)
                    contributing = inside & valid
                    if contributing.any():
                        found[name] = True
                        partials[name].append(float(sums[contributing].sum()))

        return {
            name: math.fsum(partials[name]) if found[name] else None
            for name in raster.band_names
        }
