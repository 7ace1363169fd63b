from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from rasterio.crs import CRS
from rasterio.enums import Resampling
from rasterio.errors import CRSError

from hazard_exposure.utils.errors import ConfigurationError
from hazard_exposure.utils.utils import setup_logging

logger = setup_logging(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent / "config.yaml"

HAZARD_MODES = ("tiered", "binary")

THRESHOLD_OPERATORS = ("gt", "gte", "lt", "lte", "eq")

RANKING_METRICS = (
    "average_risk_score",
    "risk_score",
    "total_risk_score",
    "exposure_ratio",
    "exposure_density",
    "exposed_population",
    "total_population",
)


@dataclass(frozen=True)
class TierBin:
    """
    Inclusive value range of the source ordinal scale mapped onto one tier.

    Attributes:
        min: Lowest source value belonging to the bin
        max: Highest source value belonging to the bin
        tier: Ordinal tier index assigned to the bin (1 = lowest severity)
    """

    min: float
    max: float
    tier: int


def equal_width_bins(lo: int, hi: int, n_tiers: int) -> List[TierBin]:
    """
    Split the integer scale [lo, hi] into n_tiers contiguous equal-width bins.

    Example:
        >>> equal_width_bins(1, 8, 4)[0]
        TierBin(min=1, max=2, tier=1)
    """
    span = hi - lo + 1
    if n_tiers <= 0 or span <= 0 or span % n_tiers != 0:
        raise ConfigurationError(
            f"Cannot split [{lo}, {hi}] into {n_tiers} equal-width tiers"
        )
    width = span // n_tiers
    return [
        TierBin(min=lo + i * width, max=lo + (i + 1) * width - 1, tier=i + 1)
        for i in range(n_tiers)
    ]


@dataclass(frozen=True)
class Threshold:
    """
    Exposure threshold of a binary hazard profile.

    Attributes:
        operator: Comparison applied to the trigger value (gt, gte, lt, lte, eq)
        value: Threshold value, e.g. 0 m flood depth or 10 m elevation
        label: Human-readable description (return period, LECZ definition)
    """

    operator: str
    value: float
    label: str = ""


@dataclass(frozen=True)
class HazardProfile:
    """
    Strategy record that parameterises the exposure pipeline for one hazard.

    A profile fixes which trigger rasters are fused and how, how many tiers the
    fused raster has, the tier weights used by the risk score, and which derived
    metrics are produced. Binary profiles are the degenerate single-tier case
    (exposed / not exposed).
    """

    name: str
    mode: str
    resolution: float
    trigger_names: Tuple[str, ...]
    tier_labels: Tuple[str, ...]
    tier_weights: Tuple[int, ...]
    bins: Tuple[TierBin, ...] = ()
    valid_range: Optional[Tuple[float, float]] = None
    threshold: Optional[Threshold] = None
    area_metrics: bool = False
    score_metrics: bool = True
    ranking_metric: str = "average_risk_score"
    description: str = ""

    @property
    def n_tiers(self) -> int:
        return len(self.tier_labels)

    @property
    def is_binary(self) -> bool:
        return self.mode == "binary"

    @property
    def tiers(self) -> Tuple[int, ...]:
        return tuple(range(1, self.n_tiers + 1))


@dataclass(frozen=True)
class ProcessingSettings:
    """Tunables of the zonal reduction stage."""

    max_pixels: float = 1e13
    tile_size: int = 1024
    best_effort: bool = True
    max_workers: int = 4
    hazard_resampling: Resampling = Resampling.nearest
    population_resampling: Resampling = Resampling.sum
    # Projected CRS of the sampling grid; None keeps a projected source CRS
    target_crs: Optional[str] = None


@dataclass(frozen=True)
class ZoneSettings:
    """Attribute columns identifying base zones and their parent zone."""

    id_column: str = "ADM3_PCODE"
    name_column: Optional[str] = "ADM3_EN"
    parent_column: str = "ADM1_EN"


def _resampling_method(method: str) -> Resampling:
    """
    Convert a resampling method name to the rasterio Resampling enum value.

    Raises:
        ConfigurationError: If the specified resampling method is not supported
    """
    try:
        return Resampling[method]
    except KeyError:
        raise ConfigurationError(
            f"Invalid resampling method: {method}. Must be one of: {[m.name for m in Resampling]}"
        ) from None


class ProjectConfig:
    """
    Project Configuration Management
    ==============================

    Loads config.yaml and turns it into immutable records that are passed into
    each pipeline component at construction:

    - ProcessingSettings: pixel budget, tile size, best-effort switch, worker count
    - ZoneSettings: attribute columns of the zone vector source
    - HazardProfile per hazard (landslide, flood, coastal)
    - data paths for the command line adapters

    Every value is validated here, before any raster is touched, so that an
    inconsistent tier table or threshold fails fast with a ConfigurationError.

    Usage:
        >>> config = ProjectConfig()
        >>> profile = config.profile("landslide")
        >>> profile.tier_weights
        (1, 2, 3, 4)
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None, data: Optional[Dict[str, Any]] = None):
        """
        Initialize configuration from a YAML file or an already-parsed mapping.

        Args:
            config_path: Path to a YAML file with a top-level 'data' section.
                Defaults to the config.yaml shipped with the package.
            data: Parsed 'data' section, used instead of reading a file.
        """
        self.config_path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
        self.config = data if data is not None else self.get_config(self.config_path)

        # =================================================================
        # PATH CONFIGURATION
        # =================================================================
        paths = self.config.get("data_paths", {})
        # Relative to the working directory of the run
        self.output_dir = Path(paths.get("local_output_dir", "output"))

        # =================================================================
        # PROCESSING PARAMETERS
        # =================================================================
        self.processing = self._build_processing(self.config.get("processing", {}))

        # =================================================================
        # ZONE ATTRIBUTES
        # =================================================================
        zones = self.config.get("zones", {})
        self.zones = ZoneSettings(
            id_column=zones.get("id_column", ZoneSettings.id_column),
            name_column=zones.get("name_column", ZoneSettings.name_column),
            parent_column=zones.get("parent_column", ZoneSettings.parent_column),
        )

        # =================================================================
        # HAZARD PROFILES
        # =================================================================
        hazards = self.config.get("hazards")
        if not hazards:
            raise ConfigurationError("Configuration has no 'hazards' section")
        self.hazard_profiles: Dict[str, HazardProfile] = {
            name: self._build_profile(name, section or {})
            for name, section in hazards.items()
        }

        logger.debug(f"Loaded hazard profiles: {list(self.hazard_profiles)}")
        logger.debug(f"Processing settings: {self.processing}")

    @staticmethod
    def get_config(config_path: Path) -> dict:
        """
        Load configuration from a YAML file.

        Returns:
            dict: The 'data' section of the file

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigurationError: If the file has no 'data' section
        """
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        with open(config_path, "r") as f:
            config = (yaml.safe_load(f) or {}).get("data", {})
        if not config:
            raise ConfigurationError("Invalid configuration file: 'data' section is missing")
        return config

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProjectConfig":
        """Build a configuration from a parsed 'data' mapping (used by tests and notebooks)."""
        return cls(data=data)

    def profile(self, name: str) -> HazardProfile:
        if name not in self.hazard_profiles:
            raise ConfigurationError(
                f"Unknown hazard profile '{name}'. Available: {sorted(self.hazard_profiles)}"
            )
        return self.hazard_profiles[name]

    def _build_processing(self, section: Dict[str, Any]) -> ProcessingSettings:
        defaults = ProcessingSettings()
        settings = ProcessingSettings(
            max_pixels=float(section.get("max_pixels", defaults.max_pixels)),
            tile_size=int(section.get("tile_size", defaults.tile_size)),
            best_effort=bool(section.get("best_effort", defaults.best_effort)),
            max_workers=int(section.get("max_workers", defaults.max_workers)),
            hazard_resampling=_resampling_method(
                section.get("hazard_resampling_method", defaults.hazard_resampling.name)
            ),
            population_resampling=_resampling_method(
                section.get("population_resampling_method", defaults.population_resampling.name)
            ),
            target_crs=section.get("target_crs", defaults.target_crs),
        )
        if settings.max_pixels <= 0:
            raise ConfigurationError(f"max_pixels must be positive, got {settings.max_pixels}")
        if settings.tile_size <= 0:
            raise ConfigurationError(f"tile_size must be positive, got {settings.tile_size}")
        if settings.max_workers <= 0:
            raise ConfigurationError(f"max_workers must be positive, got {settings.max_workers}")
        if settings.target_crs is not None:
            try:
                target = CRS.from_user_input(settings.target_crs)
            except CRSError as e:
                raise ConfigurationError(f"Invalid target_crs '{settings.target_crs}': {e}") from None
            if target.is_geographic:
                raise ConfigurationError(
                    f"target_crs must be projected so cell areas are in square metres, got {settings.target_crs}"
                )
        return settings

    def _build_profile(self, name: str, section: Dict[str, Any]) -> HazardProfile:
        """
        Build and validate one hazard profile.

        Raises:
            ConfigurationError: If tiers, weights, bins or thresholds are missing
                or inconsistent
        """
        mode = section.get("mode")
        if mode not in HAZARD_MODES:
            raise ConfigurationError(f"[{name}] mode must be one of {HAZARD_MODES}, got {mode!r}")

        resolution = section.get("resolution")
        if resolution is None or float(resolution) <= 0:
            raise ConfigurationError(f"[{name}] resolution must be a positive number, got {resolution!r}")

        triggers = tuple(section.get("triggers") or ())
        if not triggers:
            raise ConfigurationError(f"[{name}] at least one trigger raster must be declared")
        if len(set(triggers)) != len(triggers):
            raise ConfigurationError(f"[{name}] trigger names must be unique: {list(triggers)}")

        tiers = section.get("tiers") or []
        if not tiers:
            raise ConfigurationError(f"[{name}] tiers are missing")
        labels = []
        weights = []
        for i, tier in enumerate(tiers, start=1):
            if "label" not in tier or "weight" not in tier:
                raise ConfigurationError(f"[{name}] tier {i} needs both 'label' and 'weight'")
            labels.append(str(tier["label"]))
            weights.append(tier["weight"])
        self._validate_weights(name, weights)

        valid_range = self._parse_range(name, section.get("valid_range"))

        bins: List[TierBin] = []
        threshold = None
        if mode == "tiered":
            if valid_range is None:
                raise ConfigurationError(f"[{name}] tiered profiles need a valid_range")
            bins = self._parse_bins(name, tiers, valid_range, section.get("equal_width_bins", False))
        else:
            if len(tiers) != 1:
                raise ConfigurationError(f"[{name}] binary profiles have exactly one tier, got {len(tiers)}")
            threshold = self._parse_threshold(name, section.get("threshold"))

        metrics = section.get("metrics", {})
        ranking_metric = section.get("ranking_metric", "average_risk_score")
        if ranking_metric not in RANKING_METRICS:
            raise ConfigurationError(
                f"[{name}] ranking_metric must be one of {RANKING_METRICS}, got {ranking_metric!r}"
            )

        return HazardProfile(
            name=name,
            mode=mode,
            resolution=float(resolution),
            trigger_names=triggers,
            tier_labels=tuple(labels),
            tier_weights=tuple(int(w) for w in weights),
            bins=tuple(bins),
            valid_range=valid_range,
            threshold=threshold,
            area_metrics=bool(metrics.get("area", False)),
            score_metrics=bool(metrics.get("score", mode == "tiered")),
            ranking_metric=ranking_metric,
            description=section.get("description", ""),
        )

    @staticmethod
    def _validate_weights(name: str, weights: List[Any]) -> None:
        for weight in weights:
            if isinstance(weight, bool) or not isinstance(weight, int):
                raise ConfigurationError(f"[{name}] tier weights must be integers, got {weight!r}")
        if any(b <= a for a, b in zip(weights, weights[1:])):
            raise ConfigurationError(f"[{name}] tier weights must be strictly increasing, got {weights}")

    @staticmethod
    def _parse_range(name: str, value: Any) -> Optional[Tuple[float, float]]:
        if value is None:
            return None
        if len(value) != 2 or value[0] > value[1]:
            raise ConfigurationError(f"[{name}] valid_range must be [lo, hi] with lo <= hi, got {value!r}")
        return float(value[0]), float(value[1])

    @staticmethod
    def _parse_threshold(name: str, section: Optional[Dict[str, Any]]) -> Threshold:
        if not section or "operator" not in section or "value" not in section:
            raise ConfigurationError(f"[{name}] binary profiles need a threshold with operator and value")
        operator = section["operator"]
        if operator not in THRESHOLD_OPERATORS:
            raise ConfigurationError(
                f"[{name}] unsupported threshold operator {operator!r}. Must be one of: {list(THRESHOLD_OPERATORS)}"
            )
        return Threshold(operator=operator, value=float(section["value"]), label=section.get("label", ""))

    @staticmethod
    def _parse_bins(
        name: str, tiers: List[Dict[str, Any]], valid_range: Tuple[float, float], equal_width: bool
    ) -> List[TierBin]:
        """
        Read tier bins and check they are contiguous, ascending and cover valid_range.

        When equal_width is set the bins are generated from the valid range and
        the tier count instead of being read from the tier entries.
        """
        lo, hi = valid_range
        if equal_width:
            return equal_width_bins(int(lo), int(hi), len(tiers))

        bins = []
        for i, tier in enumerate(tiers, start=1):
            if "min" not in tier or "max" not in tier:
                raise ConfigurationError(
                    f"[{name}] tier {i} has no bin boundaries; give min/max or set equal_width_bins"
                )
            if tier["min"] > tier["max"]:
                raise ConfigurationError(f"[{name}] tier {i} has min > max")
            bins.append(TierBin(min=tier["min"], max=tier["max"], tier=i))

        if bins[0].min != lo or bins[-1].max != hi:
            raise ConfigurationError(
                f"[{name}] tier bins must cover the valid range [{lo}, {hi}], "
                f"got [{bins[0].min}, {bins[-1].max}]"
            )
        for previous, current in zip(bins, bins[1:]):
            # Integer ordinal scale: the next bin starts one step after the previous ends
            if current.min != previous.max + 1:
                raise ConfigurationError(
                    f"[{name}] tier bins must be contiguous and ascending: "
                    f"tier {previous.tier} ends at {previous.max}, tier {current.tier} starts at {current.min}"
                )
        return bins
