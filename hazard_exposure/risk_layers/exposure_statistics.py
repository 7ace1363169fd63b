from dataclasses import dataclass
import math
from typing import List, Optional, Sequence, Tuple

from hazard_exposure.config.config import HazardProfile
from hazard_exposure.risk_layers.zonal_reducer import Zone, ZonalReduction
from hazard_exposure.utils.errors import ConfigurationError
from hazard_exposure.utils.utils import setup_logging

logger = setup_logging(__name__)

TOTAL_POPULATION_BAND = "total_pop"
EXPOSED_CELLS_BAND = "exposed_cells"


def tier_band_name(tier: int) -> str:
    """Band name of the population masked to one hazard tier."""
    return f"tier_{tier}_pop"


@dataclass(frozen=True)
class ZoneStatistics:
    """
    Exposure statistics of one base zone.

    Attributes:
        zone_id: Identifier of the zone
        parent_id: Parent zone (province) the zone is grouped under
        total_population: Rounded population of the zone
        tier_populations: Rounded population per hazard tier, tier 1 first
        tier_ratios: tier population / total population, 0 for empty zones
        risk_score: Population-weighted mean tier weight, 0 for empty zones
        exposed_population: Population in any hazard tier
        exposure_ratio: exposed population / total population
        exposed_area_km2: Area of exposed cells (area profiles only)
        exposure_density: exposed population per exposed km2 (area profiles only)
        approximate: True when the zone was reduced best-effort at a coarser scale
        zone_name: Display name of the zone
    """

    zone_id: str
    parent_id: Optional[str]
    total_population: int
    tier_populations: Tuple[int, ...]
    tier_ratios: Tuple[float, ...]
    risk_score: float
    exposed_population: int
    exposure_ratio: float
    exposed_area_km2: Optional[float] = None
    exposure_density: Optional[float] = None
    approximate: bool = False
    zone_name: Optional[str] = None


def coerce(value: Optional[float]) -> float:
    """Absent reductions count as zero."""
    return 0.0 if value is None else float(value)


def round_count(value: float) -> int:
    """Round a non-negative population sum half-up to whole people."""
    return int(math.floor(value + 0.5))


def safe_denominator(value: float) -> float:
    """Replace a zero denominator by 1; numerators over a zero denominator are zero as well."""
    return value if value > 0 else 1


def apportion(raw_values: Sequence[float], cap: int) -> List[int]:
    """
    Round tier populations so that their sum never exceeds the rounded total.

    Each value is rounded half-up; if the rounded sum exceeds ``cap`` the
    values that were rounded up the most give back one person each until the
    sum fits (largest remainder correction).
    """
    rounded = [round_count(v) for v in raw_values]
    excess = sum(rounded) - cap
    if excess <= 0:
        return rounded

    order = sorted(range(len(rounded)), key=lambda i: rounded[i] - raw_values[i], reverse=True)
    while excess > 0:
        changed = False
        for i in order:
            if excess == 0:
                break
            if rounded[i] > 0:
                rounded[i] -= 1
                excess -= 1
                changed = True
        if not changed:
            break
    return rounded


class ExposureStatistics:
    """
    Derives per-zone exposure metrics from one multi-band zonal reduction.

    Order of operations per zone:
    1. Absent bands are coerced to 0.
    2. Population sums are rounded to whole people, before any division.
    3. Ratios, risk score and density are derived from the rounded counts with
       the zero-denominator policy of safe_denominator.
    """

    def __init__(self, profile: HazardProfile, cell_area_km2: Optional[float] = None):
        """
        Args:
            profile: Hazard profile (tiers, weights, metric selection)
            cell_area_km2: Area of one native raster cell, required for area profiles
        """
        if profile.area_metrics and (cell_area_km2 is None or cell_area_km2 <= 0):
            raise ConfigurationError(
                f"Profile '{profile.name}' computes exposed area and needs a positive cell area"
            )
        self.profile = profile
        self.cell_area_km2 = cell_area_km2

    def compute(self, zone: Zone, reduction: ZonalReduction) -> ZoneStatistics:
        values = reduction.values
        return self.compute_from_values(
            zone,
            total=values.get(TOTAL_POPULATION_BAND),
            tiers=[values.get(tier_band_name(tier)) for tier in self.profile.tiers],
            exposed_cells=values.get(EXPOSED_CELLS_BAND),
            approximate=reduction.approximate,
        )

    def compute_from_values(
        self,
        zone: Zone,
        total: Optional[float],
        tiers: Sequence[Optional[float]],
        exposed_cells: Optional[float] = None,
        approximate: bool = False,
    ) -> ZoneStatistics:
        if len(tiers) != self.profile.n_tiers:
            raise ValueError(
                f"Expected {self.profile.n_tiers} tier values for zone '{zone.zone_id}', got {len(tiers)}"
            )

        total_population = round_count(coerce(total))
        tier_populations = apportion([coerce(v) for v in tiers], total_population)

        # Zero-population zone: denominator 1, every ratio and the score are 0
        denominator = safe_denominator(total_population)
        tier_ratios = tuple(pop / denominator for pop in tier_populations)
        risk_score = sum(
            ratio * weight for ratio, weight in zip(tier_ratios, self.profile.tier_weights)
        )

        exposed_population = sum(tier_populations)
        # Same zero-population policy as the tier ratios
        exposure_ratio = exposed_population / denominator

        exposed_area_km2 = None
        exposure_density = None
        if self.profile.area_metrics:
            exposed_area_km2 = coerce(exposed_cells) * self.cell_area_km2
            # No exposed cells means no exposed population: density 0 over denominator 1
            exposure_density = exposed_population / safe_denominator(exposed_area_km2)

        stats = ZoneStatistics(
            zone_id=zone.zone_id,
            parent_id=zone.parent_id,
            total_population=total_population,
            tier_populations=tuple(tier_populations),
            tier_ratios=tier_ratios,
            risk_score=risk_score,
            exposed_population=exposed_population,
            exposure_ratio=exposure_ratio,
            exposed_area_km2=exposed_area_km2,
            exposure_density=exposure_density,
            approximate=approximate,
            zone_name=zone.name,
        )
        logger.debug(
            f"Zone {zone.zone_id}: population {total_population}, "
            f"tiers {list(tier_populations)}, score {risk_score:.3f}"
        )
        return stats
