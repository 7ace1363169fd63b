from dataclasses import dataclass, fields
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple, TypeVar

import pandas as pd

from hazard_exposure.config.config import HazardProfile
from hazard_exposure.risk_layers.exposure_statistics import ZoneStatistics, safe_denominator
from hazard_exposure.utils.errors import EmptyGroupError
from hazard_exposure.utils.utils import setup_logging

logger = setup_logging(__name__)


@dataclass(frozen=True)
class ProvinceStatistics:
    """
    Exposure statistics of one parent zone (province).

    Counts are re-summed over member zones and every ratio-type metric is
    re-derived from the pooled counts. ``average_risk_score`` is the single
    exception: it is the equal-weight mean of member zone scores, a
    zone-comparison statistic rather than a population-weighted one.
    """

    province: str
    total_population: int
    tier_populations: Tuple[int, ...]
    tier_ratios: Tuple[float, ...]
    risk_score: float
    total_risk_score: float
    average_risk_score: float
    exposed_population: int
    exposure_ratio: float
    exposed_area_km2: Optional[float]
    exposure_density: Optional[float]
    zone_count: int
    approximate_zone_count: int


@dataclass(frozen=True)
class NationalTotals:
    """Totals over every zone of the run, summed directly from zone records."""

    total_population: int
    tier_populations: Tuple[int, ...]
    tier_ratios: Tuple[float, ...]
    exposed_population: int
    exposure_ratio: float
    exposed_area_km2: Optional[float]
    exposure_density: Optional[float]
    zone_count: int
    approximate_zone_count: int


class HierarchicalAggregator:
    """
    Rolls zone statistics up to provinces and to the national level.

    The set of provinces is the set of distinct parent identifiers present in
    the zone statistics, so a province without member zones never appears.
    """

    def __init__(self, profile: HazardProfile):
        self.profile = profile

    def aggregate(
        self, zone_stats: Sequence[ZoneStatistics]
    ) -> Tuple[List[ProvinceStatistics], NationalTotals]:
        """
        Args:
            zone_stats: Statistics of every successfully reduced base zone

        Returns:
            Provinces sorted by name ascending, and the national totals
        """
        frame = self._zone_frame(zone_stats)

        orphans = int(frame["parent_id"].isna().sum())
        if orphans:
            logger.warning(f"{orphans} zone(s) have no parent zone; counted in national totals only")

        provinces = []
        grouped = frame.dropna(subset=["parent_id"]).groupby("parent_id", sort=True)
        for name, members in grouped:
            if members.empty:
                raise EmptyGroupError(f"Province '{name}' has no member zones")
            provinces.append(self._province(name, members))

        national = self.national_totals(zone_stats)
        logger.info(
            f"Aggregated {len(zone_stats)} zones into {len(provinces)} provinces; "
            f"national population {national.total_population:,}, exposed {national.exposed_population:,}"
        )
        return provinces, national

    def national_totals(self, zone_stats: Sequence[ZoneStatistics]) -> NationalTotals:
        """Sum over all zones directly, bypassing the province grouping."""
        n_tiers = self.profile.n_tiers
        total = sum(z.total_population for z in zone_stats)
        tiers = tuple(sum(z.tier_populations[i] for z in zone_stats) for i in range(n_tiers))
        exposed = sum(z.exposed_population for z in zone_stats)
        area, density = self._area_metrics(
            exposed, [z.exposed_area_km2 for z in zone_stats]
        )
        # Empty run: denominator 1 keeps every ratio at 0
        denominator = safe_denominator(total)
        return NationalTotals(
            total_population=total,
            tier_populations=tiers,
            tier_ratios=tuple(t / denominator for t in tiers),
            exposed_population=exposed,
            exposure_ratio=exposed / denominator,
            exposed_area_km2=area,
            exposure_density=density,
            zone_count=len(zone_stats),
            approximate_zone_count=sum(1 for z in zone_stats if z.approximate),
        )

    def _province(self, name: str, members: pd.DataFrame) -> ProvinceStatistics:
        tier_columns = self._tier_columns()
        total = int(members["total_population"].sum())
        tiers = tuple(int(members[col].sum()) for col in tier_columns)
        exposed = int(members["exposed_population"].sum())
        zone_count = len(members)

        # Province without population: denominator 1, ratios and pooled score are 0
        denominator = safe_denominator(total)
        tier_ratios = tuple(t / denominator for t in tiers)
        pooled_score = sum(r * w for r, w in zip(tier_ratios, self.profile.tier_weights))

        total_risk_score = math.fsum(members["risk_score"])
        area, density = self._area_metrics(exposed, list(members["exposed_area_km2"]))

        return ProvinceStatistics(
            province=name,
            total_population=total,
            tier_populations=tiers,
            tier_ratios=tier_ratios,
            risk_score=pooled_score,
            total_risk_score=total_risk_score,
            average_risk_score=total_risk_score / zone_count,
            exposed_population=exposed,
            exposure_ratio=exposed / denominator,
            exposed_area_km2=area,
            exposure_density=density,
            zone_count=zone_count,
            approximate_zone_count=int(members["approximate"].sum()),
        )

    def _area_metrics(
        self, exposed: int, areas: Sequence[Optional[float]]
    ) -> Tuple[Optional[float], Optional[float]]:
        if not self.profile.area_metrics:
            return None, None
        area = math.fsum(a for a in areas if a is not None and not pd.isna(a))
        # No exposed area means no exposed population: density 0 over denominator 1
        return area, exposed / safe_denominator(area)

    def _tier_columns(self) -> List[str]:
        return [f"tier_{tier}" for tier in self.profile.tiers]

    def _zone_frame(self, zone_stats: Sequence[ZoneStatistics]) -> pd.DataFrame:
        columns = ["zone_id", "parent_id", "total_population", *self._tier_columns(),
                   "exposed_population", "exposed_area_km2", "risk_score", "approximate"]
        rows = []
        for z in zone_stats:
            if len(z.tier_populations) != self.profile.n_tiers:
                raise ValueError(
                    f"Zone '{z.zone_id}' has {len(z.tier_populations)} tiers, "
                    f"profile '{self.profile.name}' has {self.profile.n_tiers}"
                )
            rows.append(
                [z.zone_id, z.parent_id, z.total_population, *z.tier_populations,
                 z.exposed_population, z.exposed_area_km2, z.risk_score, z.approximate]
            )
        return pd.DataFrame(rows, columns=columns)


# =================================================================
# RANKING
# =================================================================

Ranked = TypeVar("Ranked", ProvinceStatistics, ZoneStatistics)


def _rank(records: Sequence[Ranked], metric: str, descending: bool, limit: Optional[int]) -> List[Ranked]:
    if records and metric not in {f.name for f in fields(records[0])}:
        raise ValueError(f"Unknown ranking metric '{metric}'")
    ranked = sorted(
        records,
        key=lambda r: getattr(r, metric) if getattr(r, metric) is not None else 0,
        reverse=descending,
    )
    return ranked if limit is None else ranked[:limit]


def rank_provinces(
    provinces: Sequence[ProvinceStatistics],
    metric: str = "average_risk_score",
    descending: bool = True,
    limit: Optional[int] = None,
) -> List[ProvinceStatistics]:
    """Return a new list of provinces ordered by ``metric``; the input is left untouched."""
    return _rank(provinces, metric, descending, limit)


def rank_zones(
    zones: Sequence[ZoneStatistics],
    metric: str = "risk_score",
    descending: bool = True,
    limit: Optional[int] = None,
) -> List[ZoneStatistics]:
    """Return a new list of zones ordered by ``metric``; the input is left untouched."""
    return _rank(zones, metric, descending, limit)


# =================================================================
# TABLES
# =================================================================
# Column names and ordering are a stable contract for export collaborators.

def tier_column_prefixes(profile: HazardProfile) -> List[str]:
    """Column prefix per tier, e.g. 'Very_High_Risk' for the 'Very High' tier."""
    return [f"{label.replace(' ', '_')}_Risk" for label in profile.tier_labels]


def _tier_columns(profile: HazardProfile, populations, ratios) -> Dict[str, Any]:
    # Binary profiles: the single tier duplicates Exposed_Population / Exposure_Ratio
    if profile.is_binary:
        return {}
    prefixes = tier_column_prefixes(profile)
    row = {f"{p}_Population": pop for p, pop in zip(prefixes, populations)}
    row.update({f"{p}_Ratio": ratio for p, ratio in zip(prefixes, ratios)})
    return row


def _exposure_columns(profile: HazardProfile, record) -> Dict[str, Any]:
    row = {
        "Exposed_Population": record.exposed_population,
        "Exposure_Ratio": record.exposure_ratio,
    }
    if profile.area_metrics:
        row["Exposed_Area_km2"] = record.exposed_area_km2
        row["Exposure_Density"] = record.exposure_density
    return row


def zone_table(zone_stats: Sequence[ZoneStatistics], profile: HazardProfile) -> pd.DataFrame:
    """One row per zone."""
    rows = []
    for z in zone_stats:
        row = {
            "Zone_ID": z.zone_id,
            "Zone_Name": z.zone_name or z.zone_id,
            "Province": z.parent_id,
            "Total_Population": z.total_population,
        }
        row.update(_tier_columns(profile, z.tier_populations, z.tier_ratios))
        if profile.score_metrics:
            row["Risk_Score"] = z.risk_score
        row.update(_exposure_columns(profile, z))
        row["Approximate"] = z.approximate
        rows.append(row)
    return pd.DataFrame(rows, columns=zone_columns(profile))


def province_table(provinces: Sequence[ProvinceStatistics], profile: HazardProfile) -> pd.DataFrame:
    """One row per province with the pooled metrics and member zone counts."""
    rows = []
    for p in provinces:
        row = {"Province": p.province, "Total_Population": p.total_population}
        row.update(_tier_columns(profile, p.tier_populations, p.tier_ratios))
        if profile.score_metrics:
            row["Risk_Score"] = p.risk_score
            row["Total_Risk_Score"] = p.total_risk_score
            row["Average_Risk_Score"] = p.average_risk_score
        row.update(_exposure_columns(profile, p))
        row["Zone_Count"] = p.zone_count
        row["Approximate_Zone_Count"] = p.approximate_zone_count
        rows.append(row)
    return pd.DataFrame(rows, columns=province_columns(profile))


def national_table(national: NationalTotals, profile: HazardProfile) -> pd.DataFrame:
    """Single-row table of the national totals."""
    row = {"Total_Population": national.total_population}
    row.update(_tier_columns(profile, national.tier_populations, national.tier_ratios))
    row.update(_exposure_columns(profile, national))
    row["Zone_Count"] = national.zone_count
    return pd.DataFrame([row], columns=national_columns(profile))


def _tier_column_names(profile: HazardProfile) -> List[str]:
    if profile.is_binary:
        return []
    prefixes = tier_column_prefixes(profile)
    return [f"{p}_Population" for p in prefixes] + [f"{p}_Ratio" for p in prefixes]


def _exposure_column_names(profile: HazardProfile) -> List[str]:
    names = ["Exposed_Population", "Exposure_Ratio"]
    if profile.area_metrics:
        names += ["Exposed_Area_km2", "Exposure_Density"]
    return names


def zone_columns(profile: HazardProfile) -> List[str]:
    names = ["Zone_ID", "Zone_Name", "Province", "Total_Population", *_tier_column_names(profile)]
    if profile.score_metrics:
        names.append("Risk_Score")
    return names + _exposure_column_names(profile) + ["Approximate"]


def province_columns(profile: HazardProfile) -> List[str]:
    names = ["Province", "Total_Population", *_tier_column_names(profile)]
    if profile.score_metrics:
        names += ["Risk_Score", "Total_Risk_Score", "Average_Risk_Score"]
    return names + _exposure_column_names(profile) + ["Zone_Count", "Approximate_Zone_Count"]


def national_columns(profile: HazardProfile) -> List[str]:
    names = ["Total_Population", *_tier_column_names(profile)]
    return names + _exposure_column_names(profile) + ["Zone_Count"]
