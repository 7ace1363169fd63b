from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import time
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd
from rasterio.crs import CRS

from hazard_exposure.config.config import HazardProfile, ProcessingSettings
from hazard_exposure.risk_layers.aggregation import (
    HierarchicalAggregator,
    NationalTotals,
    ProvinceStatistics,
    national_table,
    province_table,
    zone_table,
)
from hazard_exposure.risk_layers.exposure_statistics import (
    EXPOSED_CELLS_BAND,
    TOTAL_POPULATION_BAND,
    ExposureStatistics,
    ZoneStatistics,
    tier_band_name,
)
from hazard_exposure.risk_layers.hazard_layer import HAZARD_BAND, HazardFusion, TriggerInput
from hazard_exposure.risk_layers.raster_algebra import Raster, check_alignment, update_mask
from hazard_exposure.risk_layers.zonal_reducer import ZonalReducer, Zone
from hazard_exposure.utils.errors import ConfigurationError, ZoneReductionFailure
from hazard_exposure.utils.utils import setup_logging

logger = setup_logging(__name__)

SQUARE_METERS_PER_KM2 = 1e6


@dataclass(frozen=True)
class ZoneFailure:
    """A zone whose reduction did not complete; its statistics are withheld, not zeroed."""

    zone_id: str
    parent_id: Optional[str]
    reason: str


@dataclass(frozen=True)
class ExposureReport:
    """
    Fully resolved result of one pipeline run.

    Attributes:
        profile: Hazard profile the run was parameterised with
        zone_statistics: Statistics of every reduced zone, in input order
        failures: Zones whose reduction failed
        provinces: Province statistics sorted by name
        national: National totals over all reduced zones
    """

    profile: HazardProfile
    zone_statistics: List[ZoneStatistics]
    failures: List[ZoneFailure]
    provinces: List[ProvinceStatistics]
    national: NationalTotals
    elapsed_seconds: float = 0.0

    @property
    def authoritative_zone_ids(self) -> List[str]:
        """Zones reduced exactly at the configured resolution."""
        return [z.zone_id for z in self.zone_statistics if not z.approximate]

    @property
    def approximate_zone_ids(self) -> List[str]:
        """Zones reduced best-effort at a coarser scale."""
        return [z.zone_id for z in self.zone_statistics if z.approximate]

    @property
    def failed_zone_ids(self) -> List[str]:
        return [f.zone_id for f in self.failures]

    def summary(self) -> Dict[str, int]:
        return {
            "zones": len(self.zone_statistics) + len(self.failures),
            "authoritative": len(self.authoritative_zone_ids),
            "approximate": len(self.approximate_zone_ids),
            "failed": len(self.failures),
            "provinces": len(self.provinces),
        }

    def zone_table(self) -> pd.DataFrame:
        return zone_table(self.zone_statistics, self.profile)

    def province_table(self) -> pd.DataFrame:
        return province_table(self.provinces, self.profile)

    def national_table(self) -> pd.DataFrame:
        return national_table(self.national, self.profile)

    def failure_table(self) -> pd.DataFrame:
        return pd.DataFrame(
            [[f.zone_id, f.parent_id, f.reason] for f in self.failures],
            columns=["Zone_ID", "Province", "Reason"],
        )


class ExposurePipeline:
    """
    Hazard Exposure Pipeline
    ========================

    One generic pipeline for every hazard, parameterised by a HazardProfile:

    1. Validate grid alignment and sampling resolution (fail fast)
    2. Fuse trigger rasters into the hazard-level raster (barrier)
    3. Pack total population, per-tier population and exposed-cell count
       bands into one multi-band raster
    4. Reduce every zone with one multi-band call, zones in parallel
    5. Aggregate the successful zones to provinces and national totals

    Zone failures are isolated: they are collected in the report and never
    abort the run.
    """

    def __init__(self, profile: HazardProfile, settings: Optional[ProcessingSettings] = None):
        self.profile = profile
        self.settings = settings or ProcessingSettings()
        self.fusion = HazardFusion(profile)
        self.reducer = ZonalReducer(self.settings)
        self.aggregator = HierarchicalAggregator(profile)

    def run(
        self,
        triggers: TriggerInput,
        population: Raster,
        zones: Sequence[Zone],
    ) -> ExposureReport:
        """
        Run the full exposure assessment.

        Args:
            triggers: Hazard trigger rasters, by name or in profile order
            population: Single-band population raster on the trigger grid
            zones: Base zones with their parent zone references

        Returns:
            ExposureReport with zone, province and national statistics
        """
        start = time.time()
        logger.info("=" * 60)
        logger.info(f"EXPOSURE ASSESSMENT: {self.profile.name.upper()}")
        logger.info("=" * 60)

        self._validate_inputs(triggers, population, zones)

        hazard = self.fusion.fuse(triggers)
        exposure = self.build_exposure_raster(hazard, population)
        statistics = ExposureStatistics(
            self.profile, cell_area_km2=population.cell_area / SQUARE_METERS_PER_KM2
        )

        zone_stats, failures = self.reduce_zones(exposure, zones, statistics)
        provinces, national = self.aggregator.aggregate(zone_stats)

        report = ExposureReport(
            profile=self.profile,
            zone_statistics=zone_stats,
            failures=failures,
            provinces=provinces,
            national=national,
            elapsed_seconds=time.time() - start,
        )
        logger.info(f"Run summary: {report.summary()} in {report.elapsed_seconds:.1f}s")
        return report

    def build_exposure_raster(self, hazard: Raster, population: Raster) -> Raster:
        """
        Pack every band a zone reduction needs into one raster.

        Bands: total population, population masked to each tier and, for
        area profiles, a count band of exposed cells.
        """
        check_alignment({"hazard": hazard, "population": population})
        people = np.ma.array(population.band(), dtype=np.float64)
        # Negative population is not a valid count
        people = np.ma.masked_less(people, 0)

        bands = {TOTAL_POPULATION_BAND: people}
        for tier, selector in self.fusion.tier_selectors(hazard).items():
            bands[tier_band_name(tier)] = update_mask(people, selector)

        if self.profile.area_metrics:
            level = hazard.band(HAZARD_BAND)
            bands[EXPOSED_CELLS_BAND] = np.ma.masked_array(
                np.ones(level.shape, dtype=np.uint8), mask=np.ma.getmaskarray(level)
            )
        logger.info(f"Packed {len(bands)} bands for zonal reduction: {list(bands)}")
        return Raster(bands, hazard.transform, hazard.crs)

    def reduce_zones(
        self,
        exposure: Raster,
        zones: Sequence[Zone],
        statistics: ExposureStatistics,
    ) -> Tuple[List[ZoneStatistics], List[ZoneFailure]]:
        """Reduce every zone, in parallel when more than one worker is configured."""
        workers = min(self.settings.max_workers, max(len(zones), 1))
        logger.info(f"Reducing {len(zones)} zones with {workers} worker(s)")

        def work(zone: Zone) -> Union[ZoneStatistics, ZoneFailure]:
            return self._reduce_zone(exposure, zone, statistics)

        if workers == 1:
            outcomes = [work(zone) for zone in zones]
        else:
            with ThreadPoolExecutor(max_workers=workers) as executor:
                outcomes = list(executor.map(work, zones))

        zone_stats = [o for o in outcomes if isinstance(o, ZoneStatistics)]
        failures = [o for o in outcomes if isinstance(o, ZoneFailure)]
        if failures:
            logger.warning(
                f"{len(failures)} zone(s) failed and are excluded from aggregation: "
                f"{', '.join(f.zone_id for f in failures)}"
            )
        return zone_stats, failures

    def _reduce_zone(
        self, exposure: Raster, zone: Zone, statistics: ExposureStatistics
    ) -> Union[ZoneStatistics, ZoneFailure]:
        try:
            reduction = self.reducer.reduce(exposure, zone, resolution=self.profile.resolution)
            return statistics.compute(zone, reduction)
        except ConfigurationError:
            raise
        except ZoneReductionFailure as e:
            logger.error(str(e))
            return ZoneFailure(zone.zone_id, zone.parent_id, e.reason)
        except (MemoryError, ValueError) as e:
            logger.error(f"Reduction failed for zone '{zone.zone_id}': {e}")
            return ZoneFailure(zone.zone_id, zone.parent_id, f"{type(e).__name__}: {e}")

    def _validate_inputs(
        self, triggers: TriggerInput, population: Raster, zones: Sequence[Zone]
    ) -> None:
        ids = [zone.zone_id for zone in zones]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ConfigurationError(f"Zone identifiers must be unique, duplicated: {duplicates}")

        rasters = dict(triggers) if isinstance(triggers, Mapping) else {
            name: raster for name, raster in zip(self.profile.trigger_names, triggers)
        }
        rasters["population"] = population
        check_alignment(rasters)

        if len(population.bands) != 1:
            raise ConfigurationError(
                f"Population raster must have exactly one band, got {population.band_names}"
            )
        # Resolution and exposed area are in metres
        if population.crs is not None and CRS.from_user_input(population.crs).is_geographic:
            raise ConfigurationError(
                f"Rasters are in the geographic CRS {population.crs}; warp them onto a "
                f"projected sampling grid first"
            )
        # Raises ConfigurationError before any raster computation
        factor = ZonalReducer.scale_factor(population, self.profile.resolution)
        logger.info(
            f"Sampling at {self.profile.resolution} ({factor} x {factor} native cells), "
            f"max_pixels {self.settings.max_pixels:.0f}, tile size {self.settings.tile_size}, "
            f"best effort {self.settings.best_effort}"
        )
