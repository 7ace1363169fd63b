"""
Data Loading
============

Reads hazard and population rasters and administrative zone polygons from
disk into the in-memory types of the pipeline.

- Rasters are read with rasterio; the file's nodata value becomes the band
  mask. A raster that is not on the reference grid is warped onto it with
  rasterio.warp.reproject (nearest neighbour for ordinal hazard classes, sum
  for population counts so totals are preserved).
- The reference grid is a projected grid at the hazard's sampling resolution,
  so cell areas are in square metres whatever the source CRS and cell size.
- Zones are read with geopandas, reprojected to the raster CRS and turned
  into Zone records keyed by the configured identifier column.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Union

import geopandas as gpd
import numpy as np
import pandas as pd
import rasterio
import rasterio.transform
import rasterio.warp
from rasterio.crs import CRS
from rasterio.enums import Resampling
from shapely.geometry import box

from hazard_exposure.config.config import ZoneSettings
from hazard_exposure.risk_layers.raster_algebra import Raster, as_band
from hazard_exposure.risk_layers.zonal_reducer import ZonalReducer, Zone
from hazard_exposure.utils.errors import ConfigurationError
from hazard_exposure.utils.utils import setup_logging

logger = setup_logging(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class SamplingGrid:
    """Target grid of the pipeline inputs: transform, (height, width) and CRS."""

    transform: rasterio.Affine
    shape: Tuple[int, int]
    crs: CRS

    @property
    def resolution(self) -> Tuple[float, float]:
        return abs(self.transform.a), abs(self.transform.e)


def projected_crs(raster: Raster) -> CRS:
    """UTM zone covering the centre of a raster in a geographic CRS."""
    height, width = raster.shape
    bounds = rasterio.transform.array_bounds(height, width, raster.transform)
    utm = gpd.GeoSeries([box(*bounds)], crs=raster.crs).estimate_utm_crs()
    return CRS.from_epsg(utm.to_epsg())


def sampling_grid(raster: Raster, resolution: float, target_crs: Optional[str] = None) -> SamplingGrid:
    """
    Projected grid with cells of ``resolution`` metres over the extent of ``raster``.

    The raster's own grid is kept when it is already in the target CRS and its
    cell size divides the resolution, so the zonal reducer can block-sum the
    native cells. Otherwise a new grid is derived with
    rasterio.warp.calculate_default_transform.

    Args:
        raster: First hazard trigger, defining the extent
        resolution: Sampling cell size of the hazard profile
        target_crs: Projected CRS to sample in; defaults to the raster CRS, or
            its UTM zone when the raster CRS is geographic

    Returns:
        SamplingGrid every input is warped onto
    """
    if raster.crs is None:
        raise ConfigurationError("Hazard raster has no CRS; cannot derive a projected sampling grid")

    target = CRS.from_user_input(target_crs) if target_crs else raster.crs
    if target.is_geographic:
        target = projected_crs(raster)
        logger.info(f"Geographic source CRS {raster.crs}; sampling in {target}")

    if target == raster.crs:
        try:
            factor = ZonalReducer.scale_factor(raster, resolution)
        except ConfigurationError:
            logger.info(f"Native cell size {raster.resolution} does not divide {resolution}; resampling")
        else:
            logger.info(f"Sampling on the native grid ({factor} x {factor} cells per sample)")
            return SamplingGrid(raster.transform, raster.shape, raster.crs)

    height, width = raster.shape
    bounds = rasterio.transform.array_bounds(height, width, raster.transform)
    transform, dst_width, dst_height = rasterio.warp.calculate_default_transform(
        raster.crs, target, width, height, *bounds, resolution=resolution
    )
    grid = SamplingGrid(transform, (dst_height, dst_width), target)
    logger.info(f"Sampling grid: {target}, {grid.resolution} cells, shape {grid.shape}")
    return grid


def load_raster(
    path: PathLike,
    band_name: str = "band_1",
    reference: Optional[Union[Raster, SamplingGrid]] = None,
    resampling: Resampling = Resampling.nearest,
) -> Raster:
    """
    Load the first band of a GeoTIFF as a single-band Raster.

    Args:
        path: Raster file
        band_name: Name given to the band
        reference: Raster whose grid the result must share; the file is warped
            onto it when the grids differ
        resampling: Resampling method used when warping

    Returns:
        Raster with nodata cells masked
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Raster file not found: {path}")

    with rasterio.open(path) as src:
        logger.info(f"Loading raster '{band_name}' from {path}")
        logger.info(f"  CRS: {src.crs}, resolution: {src.res}, shape: {src.shape}")
        data = src.read(1)
        nodata = src.nodata
        transform = src.transform
        crs = src.crs

    raster = Raster({band_name: as_band(data, nodata)}, transform, crs)
    if reference is None or raster.same_grid(reference):
        return raster

    logger.info(
        f"  Warping '{band_name}' onto the reference grid {reference.shape} "
        f"with {resampling.name} resampling"
    )
    return warp_to_reference(raster, reference, resampling)


def warp_to_reference(
    raster: Raster, reference: Union[Raster, SamplingGrid], resampling: Resampling
) -> Raster:
    """Reproject every band of ``raster`` onto the grid of ``reference``."""
    if raster.crs is None or reference.crs is None:
        raise ConfigurationError("Both rasters need a CRS to be warped onto a common grid")

    bands = {}
    for name, band in raster.bands.items():
        source = np.ma.array(band, dtype=np.float32).filled(np.nan)
        destination = np.full(reference.shape, np.nan, dtype=np.float32)
        rasterio.warp.reproject(
            source=source,
            destination=destination,
            src_transform=raster.transform,
            src_crs=raster.crs,
            src_nodata=np.nan,
            dst_transform=reference.transform,
            dst_crs=reference.crs,
            dst_nodata=np.nan,
            resampling=resampling,
        )
        bands[name] = as_band(destination)
        logger.debug(f"  Band '{name}': {np.ma.count(bands[name])} valid cells after warping")
    return Raster(bands, reference.transform, reference.crs)


def load_zones(
    path: PathLike,
    settings: Optional[ZoneSettings] = None,
    crs: Optional[CRS] = None,
) -> List[Zone]:
    """
    Load administrative base zones from a vector file.

    Args:
        path: Shapefile, GeoPackage or GeoJSON with one feature per base zone
        settings: Attribute columns holding zone id, name and parent zone
        crs: CRS of the rasters the zones will be reduced against

    Returns:
        Zones in file order

    Raises:
        ConfigurationError: If a configured column is missing, an identifier
            is empty or identifiers are not unique
    """
    settings = settings or ZoneSettings()
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Zone file not found: {path}")

    gdf = gpd.read_file(path)
    logger.info(f"Loaded {len(gdf)} zones from {path}")

    required = [settings.id_column, settings.parent_column]
    if settings.name_column:
        required.append(settings.name_column)
    missing = [column for column in required if column not in gdf.columns]
    if missing:
        raise ConfigurationError(
            f"Zone file {path.name} is missing columns {missing}. Available: {list(gdf.columns)}"
        )

    if crs is not None and gdf.crs is not None and gdf.crs != crs:
        logger.info(f"Reprojecting zones from {gdf.crs} to {crs}")
        gdf = gdf.to_crs(crs)
    elif crs is not None and gdf.crs is None:
        logger.warning(f"Zone file {path.name} has no CRS; assuming {crs}")

    ids = gdf[settings.id_column]
    if ids.isna().any():
        raise ConfigurationError(f"{int(ids.isna().sum())} zone(s) have no '{settings.id_column}'")
    duplicated = sorted(ids[ids.duplicated()].astype(str).unique())
    if duplicated:
        raise ConfigurationError(f"Zone identifiers in '{settings.id_column}' are not unique: {duplicated}")

    zones = []
    for _, row in gdf.iterrows():
        parent = row[settings.parent_column]
        name = row[settings.name_column] if settings.name_column else None
        zones.append(
            Zone(
                zone_id=str(row[settings.id_column]),
                geometry=row.geometry,
                parent_id=None if pd.isna(parent) else str(parent),
                name=None if name is None or pd.isna(name) else str(name),
            )
        )

    empty = sum(1 for zone in zones if zone.geometry is None or zone.geometry.is_empty)
    if empty:
        logger.warning(f"{empty} zone(s) have an empty geometry and will report no population")
    logger.info(f"Prepared {len(zones)} zones in {gdf[settings.parent_column].nunique()} parent zones")
    return zones
