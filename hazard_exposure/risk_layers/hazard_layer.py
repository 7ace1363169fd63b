from typing import Dict, Mapping, Sequence, Union
import numpy as np

from hazard_exposure.config.config import HazardProfile
from hazard_exposure.risk_layers.raster_algebra import (
    Band,
    Raster,
    check_alignment,
    equals,
    mask_range,
    max_combine,
    reclassify,
    threshold,
)
from hazard_exposure.utils.errors import ConfigurationError, InvalidRasterRange
from hazard_exposure.utils.utils import setup_logging


logger = setup_logging(__name__)

HAZARD_BAND = "hazard_level"

TriggerInput = Union[Mapping[str, Raster], Sequence[Raster]]


class HazardFusion:
    """
    Hazard Fusion Layer
    ===================

    Combines one or more trigger-specific hazard rasters into a single ordinal
    hazard-level raster with one integer band named ``hazard_level``.

    Processing Pipeline:
    1. Validity masking: each trigger is masked to the profile's closed valid
       range [lo, hi]. A trigger with no valid cell at all raises
       InvalidRasterRange; partial coverage is fine.
    2. Binary profiles (flood depth, LECZ elevation) threshold each trigger into
       an exposed / not exposed mask, the degenerate two-tier case.
    3. Multi-trigger combination: cell-wise maximum over the triggers valid at
       that cell, so the more severe trigger dominates and exposure is never
       under-stated.
    4. Tiered profiles reclassify the combined scale onto the configured tiers
       (e.g. 8 susceptibility classes onto Low / Medium / High / Very High).

    The fused raster is materialised in full before any zonal reduction starts.
    """

    def __init__(self, profile: HazardProfile):
        """
        Args:
            profile: Hazard profile holding triggers, valid range, threshold and bins
        """
        self.profile = profile
        logger.info(
            f"Initialized hazard fusion for '{profile.name}' "
            f"({profile.mode}, {profile.n_tiers} tier(s), triggers: {', '.join(profile.trigger_names)})"
        )

    def fuse(self, triggers: TriggerInput) -> Raster:
        """
        Fuse trigger rasters into one hazard-level raster.

        Args:
            triggers: Mapping of trigger name to raster, or a sequence in the
                order of the profile's trigger names

        Returns:
            Single-band raster of tier values 1..M, no data elsewhere

        Raises:
            ConfigurationError: If the supplied triggers do not match the profile
            RasterAlignmentError: If the triggers do not share one grid
            InvalidRasterRange: If a trigger has no valid cells
        """
        named = self._name_triggers(triggers)
        check_alignment(named)

        masked = {name: self._mask_valid(name, raster) for name, raster in named.items()}

        if self.profile.is_binary:
            rule = self.profile.threshold
            logger.info(f"Applying exposure threshold {rule.operator} {rule.value} ({rule.label})")
            masked = {
                name: threshold(band, rule.operator, rule.value)
                for name, band in masked.items()
            }

        if len(masked) > 1:
            logger.info(f"Combining {len(masked)} triggers with cell-wise maximum")
        combined = max_combine(list(masked.values()))

        if self.profile.is_binary:
            hazard = np.ma.array(combined, dtype=np.uint8)
        else:
            hazard = reclassify(combined, self.profile.bins)

        reference = next(iter(named.values()))
        fused = Raster({HAZARD_BAND: hazard}, reference.transform, reference.crs)
        self._log_tier_statistics(hazard)
        return fused

    def tier_selectors(self, hazard: Raster) -> Dict[int, Band]:
        """Binary selector per tier of a fused raster, keyed by tier index."""
        band = hazard.band(HAZARD_BAND)
        return {tier: equals(band, tier) for tier in self.profile.tiers}

    def _name_triggers(self, triggers: TriggerInput) -> Dict[str, Raster]:
        expected = list(self.profile.trigger_names)
        if isinstance(triggers, Mapping):
            named = dict(triggers)
        else:
            triggers = list(triggers)
            if len(triggers) != len(expected):
                raise ConfigurationError(
                    f"Profile '{self.profile.name}' expects {len(expected)} trigger raster(s), got {len(triggers)}"
                )
            named = dict(zip(expected, triggers))

        missing = [name for name in expected if name not in named]
        unknown = [name for name in named if name not in expected]
        if missing or unknown:
            raise ConfigurationError(
                f"Profile '{self.profile.name}' trigger mismatch: missing {missing}, unknown {unknown}"
            )
        return {name: named[name] for name in expected}

    def _mask_valid(self, name: str, raster: Raster) -> Band:
        band = raster.band()
        if self.profile.valid_range is not None:
            lo, hi = self.profile.valid_range
            band = mask_range(band, lo, hi)
            if np.ma.count(band) == 0:
                raise InvalidRasterRange(name, lo, hi)
        elif np.ma.count(band) == 0:
            raise InvalidRasterRange(name)

        coverage = np.ma.count(band) / band.size * 100
        logger.info(f"Trigger '{name}': {coverage:.1f}% valid cells")
        return band

    def _log_tier_statistics(self, hazard: Band) -> None:
        values = hazard.compressed()
        if values.size == 0:
            logger.warning("Fused hazard raster has no classified cells")
            return
        for tier, label in zip(self.profile.tiers, self.profile.tier_labels):
            share = np.count_nonzero(values == tier) / hazard.size * 100
            logger.info(f"  Tier {tier} ({label}): {share:.2f}% of cells")
