#!/usr/bin/env python3
"""
Hazard Exposure Assessment
==========================

Command line entry point of the zonal hazard exposure engine. Fuses the
trigger rasters of one hazard, reduces population per hazard tier over every
administrative base zone, rolls the zones up to provinces and the nation and
writes the three statistics tables as CSV.

Hazards are configured as profiles in config/config.yaml:
- landslide: earthquake and precipitation triggered susceptibility, four tiers
- flood: binary flood depth exposure for one return period
- coastal: binary low elevation coastal zone exposure

Example:
  python -m hazard_exposure.main --hazard landslide \\
      --trigger earthquake=EQ.tif --trigger precipitation=PR.tif \\
      --population pop.tif --zones llg.shp --output-dir out/
"""

import argparse
from dataclasses import replace
from pathlib import Path
import sys
from typing import Dict, List, Optional

from hazard_exposure.config.config import ProjectConfig
from hazard_exposure.risk_layers.aggregation import rank_provinces
from hazard_exposure.risk_layers.exposure_pipeline import ExposurePipeline, ExposureReport
from hazard_exposure.utils.data_loading import load_raster, load_zones, sampling_grid
from hazard_exposure.utils.errors import ConfigurationError, HazardExposureError
from hazard_exposure.utils.utils import setup_logging, suppress_warnings

logger = setup_logging(__name__)


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Hazard Exposure Assessment - population exposure per administrative zone",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m hazard_exposure.main --hazard landslide --trigger earthquake=EQ.tif --trigger precipitation=PR.tif --population pop.tif --zones llg.shp
  python -m hazard_exposure.main --hazard flood --trigger flood_depth=rcp85_2030_rp25.tif --population pop.tif --zones llg.shp --strict
  python -m hazard_exposure.main --hazard coastal --trigger elevation=dem.tif --population pop.tif --zones llg.shp --top 10
        """,
    )

    input_group = parser.add_argument_group("Inputs", "Hazard, population and zone data")
    input_group.add_argument("--hazard", required=True, help="Hazard profile name from the configuration")
    input_group.add_argument(
        "--trigger",
        action="append",
        default=[],
        metavar="NAME=PATH",
        help="Trigger raster of the hazard profile; repeat once per trigger",
    )
    input_group.add_argument("--population", required=True, help="Population count raster")
    input_group.add_argument("--zones", required=True, help="Administrative base zone polygons")

    config_group = parser.add_argument_group("Configuration Options", "Control execution behavior and output")
    config_group.add_argument("--config", type=str, help="Alternative configuration file")
    config_group.add_argument("--output-dir", type=str, help="Custom output directory for results")
    config_group.add_argument("--workers", type=int, help="Number of parallel zone reductions")
    config_group.add_argument(
        "--strict",
        action="store_true",
        help="Fail zones that exceed the pixel budget instead of coarsening them",
    )
    config_group.add_argument("--top", type=int, default=5, help="Number of provinces to list in the ranking")
    config_group.add_argument("--verbose", "-v", action="store_true", help="Enable verbose logging output")

    return parser.parse_args(argv)


def parse_triggers(values: List[str]) -> Dict[str, Path]:
    """Turn NAME=PATH arguments into a mapping of trigger name to file."""
    triggers = {}
    for value in values:
        name, sep, path = value.partition("=")
        if not sep or not name or not path:
            raise ConfigurationError(f"Trigger must be given as NAME=PATH, got '{value}'")
        if name in triggers:
            raise ConfigurationError(f"Trigger '{name}' given more than once")
        triggers[name] = Path(path)
    return triggers


def write_tables(report: ExposureReport, output_dir: Path) -> List[Path]:
    """Write zone, province and national tables (and failed zones, if any) as CSV."""
    output_dir.mkdir(parents=True, exist_ok=True)
    name = report.profile.name
    tables = {
        f"{name}_zone_statistics.csv": report.zone_table(),
        f"{name}_province_statistics.csv": report.province_table(),
        f"{name}_national_totals.csv": report.national_table(),
    }
    if report.failures:
        tables[f"{name}_failed_zones.csv"] = report.failure_table()

    written = []
    for filename, table in tables.items():
        path = output_dir / filename
        table.to_csv(path, index=False)
        logger.info(f"Saved {len(table)} rows to {path}")
        written.append(path)
    return written


def log_report(report: ExposureReport, top: int) -> None:
    profile = report.profile
    national = report.national

    logger.info(f"\n{'=' * 50}")
    logger.info(f"NATIONAL TOTALS: {profile.name.upper()}")
    logger.info(f"{'=' * 50}")
    logger.info(f"Total population: {national.total_population:,}")
    if not profile.is_binary:
        for label, pop, ratio in zip(profile.tier_labels, national.tier_populations, national.tier_ratios):
            logger.info(f"  {label}: {pop:,} ({ratio:.2%})")
    logger.info(f"Exposed population: {national.exposed_population:,} ({national.exposure_ratio:.2%})")
    if profile.area_metrics:
        logger.info(
            f"Exposed area: {national.exposed_area_km2:,.2f} km2, "
            f"density {national.exposure_density:,.1f} people/km2"
        )

    logger.info(f"\nTop {top} provinces by {profile.ranking_metric}:")
    for rank, province in enumerate(rank_provinces(report.provinces, profile.ranking_metric, limit=top), start=1):
        logger.info(f"  {rank}. {province.province}: {getattr(province, profile.ranking_metric):.4f}")

    summary = report.summary()
    logger.info(
        f"\nZones: {summary['authoritative']} authoritative, {summary['approximate']} approximate, "
        f"{summary['failed']} failed"
    )
    if report.approximate_zone_ids:
        logger.warning(f"Approximate zones: {', '.join(report.approximate_zone_ids)}")
    if report.failed_zone_ids:
        logger.warning(f"Failed zones: {', '.join(report.failed_zone_ids)}")


def run(args: argparse.Namespace) -> ExposureReport:
    config = ProjectConfig(args.config) if args.config else ProjectConfig()
    profile = config.profile(args.hazard)

    settings = config.processing
    if args.workers is not None:
        if args.workers <= 0:
            raise ConfigurationError(f"--workers must be positive, got {args.workers}")
        settings = replace(settings, max_workers=args.workers)
    if args.strict:
        settings = replace(settings, best_effort=False)

    logger.info(f"\n{'=' * 60}")
    logger.info(f"HAZARD EXPOSURE ASSESSMENT: {profile.name.upper()}")
    if profile.description:
        logger.info(profile.description)
    logger.info(f"{'=' * 60}")

    trigger_paths = parse_triggers(args.trigger)
    unknown = sorted(set(trigger_paths) - set(profile.trigger_names))
    missing = [name for name in profile.trigger_names if name not in trigger_paths]
    if unknown or missing:
        raise ConfigurationError(
            f"Profile '{profile.name}' needs triggers {list(profile.trigger_names)}; "
            f"missing {missing}, unknown {unknown}"
        )

    # The first trigger defines the extent; every input is sampled on a
    # projected grid at the profile resolution
    first_name = profile.trigger_names[0]
    first = load_raster(trigger_paths[first_name], band_name=first_name)
    grid = sampling_grid(first, profile.resolution, settings.target_crs)

    triggers = {}
    for name in profile.trigger_names:
        if name == first_name and first.same_grid(grid):
            triggers[name] = first
        else:
            triggers[name] = load_raster(
                trigger_paths[name], band_name=name, reference=grid,
                resampling=settings.hazard_resampling,
            )

    population = load_raster(
        args.population, band_name="population", reference=grid,
        resampling=settings.population_resampling,
    )
    zones = load_zones(args.zones, config.zones, crs=grid.crs)

    report = ExposurePipeline(profile, settings).run(triggers, population, zones)

    log_report(report, args.top)
    output_dir = Path(args.output_dir) if args.output_dir else config.output_dir
    write_tables(report, output_dir)
    return report


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)
    suppress_warnings()
    if args.verbose:
        import logging

        logging.getLogger().setLevel(logging.DEBUG)

    try:
        run(args)
    except (HazardExposureError, FileNotFoundError) as e:
        logger.error(f"Error during analysis: {e}")
        if args.verbose:
            import traceback

            logger.error(f"Full traceback:\n{traceback.format_exc()}")
        return 1

    logger.info(f"\n{'=' * 60}")
    logger.info("EXECUTION COMPLETED SUCCESSFULLY")
    logger.info(f"{'=' * 60}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
