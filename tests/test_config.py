"""Tests for configuration loading and fail-fast validation of hazard profiles."""

import copy
from pathlib import Path

import pytest
import yaml
from rasterio.enums import Resampling

from hazard_exposure.config.config import ProjectConfig, TierBin, equal_width_bins
from hazard_exposure.utils.errors import ConfigurationError


def _with(section, **landslide_overrides):
    data = copy.deepcopy(section)
    data["hazards"]["landslide"].update(landslide_overrides)
    return data


class TestPackagedConfig:
    def test_profiles(self, config):
        assert sorted(config.hazard_profiles) == ["coastal", "flood", "landslide"]

    def test_landslide_profile(self, config):
        profile = config.profile("landslide")
        assert profile.trigger_names == ("earthquake", "precipitation")
        assert profile.tier_weights == (1, 2, 3, 4)
        assert profile.bins[0] == TierBin(min=1, max=2, tier=1)
        assert profile.valid_range == (1.0, 8.0)
        assert profile.resolution == 100.0
        assert not profile.is_binary

    def test_binary_profiles(self, config):
        flood = config.profile("flood")
        coastal = config.profile("coastal")
        assert flood.is_binary and flood.n_tiers == 1
        assert (flood.threshold.operator, flood.threshold.value) == ("gt", 0.0)
        assert (coastal.threshold.operator, coastal.threshold.value) == ("lte", 10.0)
        assert flood.area_metrics and not flood.score_metrics

    def test_processing_and_zone_settings(self, config):
        assert config.processing.max_pixels == 1e13
        assert config.processing.population_resampling == Resampling.sum
        assert config.zones.parent_column == "ADM1_EN"
        assert config.processing.target_crs is None
        assert config.output_dir == Path("output")

    def test_unknown_profile(self, config):
        with pytest.raises(ConfigurationError, match="wildfire"):
            config.profile("wildfire")

    def test_load_from_file(self, tmp_path, landslide_data_section):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"data": landslide_data_section}))

        config = ProjectConfig(path)

        assert config.processing.tile_size == 16
        assert config.processing.max_workers == 2

    def test_missing_data_section(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"other": {}}))
        with pytest.raises(ConfigurationError):
            ProjectConfig(path)

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ProjectConfig(tmp_path / "absent.yaml")


class TestProfileValidation:
    def test_valid_section(self, landslide_data_section):
        profile = ProjectConfig.from_dict(landslide_data_section).profile("landslide")
        assert profile.tier_labels[-1] == "Very High"

    def test_equal_width_bins_option(self, landslide_data_section):
        tiers = [{"label": label, "weight": w} for label, w in [("L", 1), ("M", 2), ("H", 3), ("VH", 4)]]
        data = _with(landslide_data_section, tiers=tiers, equal_width_bins=True)

        profile = ProjectConfig.from_dict(data).profile("landslide")

        assert profile.bins == tuple(equal_width_bins(1, 8, 4))

    @pytest.mark.parametrize(
        "overrides, message",
        [
            ({"mode": "fuzzy"}, "mode"),
            ({"resolution": 0}, "resolution"),
            ({"triggers": []}, "trigger"),
            ({"triggers": ["eq", "eq"]}, "unique"),
            ({"valid_range": [8, 1]}, "valid_range"),
            ({"valid_range": None}, "valid_range"),
            ({"ranking_metric": "gdp"}, "ranking_metric"),
        ],
    )
    def test_invalid_profile_fields(self, landslide_data_section, overrides, message):
        with pytest.raises(ConfigurationError, match=message):
            ProjectConfig.from_dict(_with(landslide_data_section, **overrides))

    def test_weights_must_increase(self, landslide_data_section):
        data = _with(landslide_data_section)
        data["hazards"]["landslide"]["tiers"][2]["weight"] = 2
        with pytest.raises(ConfigurationError, match="increasing"):
            ProjectConfig.from_dict(data)

    def test_weights_must_be_integers(self, landslide_data_section):
        data = _with(landslide_data_section)
        data["hazards"]["landslide"]["tiers"][0]["weight"] = 0.5
        with pytest.raises(ConfigurationError, match="integers"):
            ProjectConfig.from_dict(data)

    def test_bins_must_be_contiguous(self, landslide_data_section):
        data = _with(landslide_data_section)
        data["hazards"]["landslide"]["tiers"][1]["min"] = 4
        with pytest.raises(ConfigurationError, match="contiguous"):
            ProjectConfig.from_dict(data)

    def test_bins_must_cover_valid_range(self, landslide_data_section):
        data = _with(landslide_data_section, valid_range=[1, 10])
        with pytest.raises(ConfigurationError, match="cover"):
            ProjectConfig.from_dict(data)

    def test_tier_needs_weight(self, landslide_data_section):
        data = _with(landslide_data_section)
        del data["hazards"]["landslide"]["tiers"][0]["weight"]
        with pytest.raises(ConfigurationError):
            ProjectConfig.from_dict(data)

    def test_binary_profile_needs_threshold(self, landslide_data_section):
        data = copy.deepcopy(landslide_data_section)
        data["hazards"]["flood"] = {
            "mode": "binary",
            "resolution": 30,
            "triggers": ["flood_depth"],
            "tiers": [{"label": "Flooded", "weight": 1}],
        }
        with pytest.raises(ConfigurationError, match="threshold"):
            ProjectConfig.from_dict(data)

    def test_binary_threshold_operator(self, landslide_data_section):
        data = copy.deepcopy(landslide_data_section)
        data["hazards"]["coastal"] = {
            "mode": "binary",
            "resolution": 30,
            "triggers": ["elevation"],
            "threshold": {"operator": "below", "value": 10},
            "tiers": [{"label": "Coastal Zone", "weight": 1}],
        }
        with pytest.raises(ConfigurationError, match="operator"):
            ProjectConfig.from_dict(data)

    def test_processing_limits(self, landslide_data_section):
        data = copy.deepcopy(landslide_data_section)
        data["processing"]["tile_size"] = 0
        with pytest.raises(ConfigurationError, match="tile_size"):
            ProjectConfig.from_dict(data)

    def test_resampling_method(self, landslide_data_section):
        data = copy.deepcopy(landslide_data_section)
        data["processing"]["population_resampling_method"] = "magic"
        with pytest.raises(ConfigurationError, match="resampling"):
            ProjectConfig.from_dict(data)

    @pytest.mark.parametrize("target_crs", ["EPSG:4326", "not a crs"])
    def test_target_crs_must_be_projected(self, landslide_data_section, target_crs):
        data = copy.deepcopy(landslide_data_section)
        data["processing"]["target_crs"] = target_crs
        with pytest.raises(ConfigurationError, match="target_crs"):
            ProjectConfig.from_dict(data)

    def test_target_crs(self, landslide_data_section):
        data = copy.deepcopy(landslide_data_section)
        data["processing"]["target_crs"] = "EPSG:32755"
        assert ProjectConfig.from_dict(data).processing.target_crs == "EPSG:32755"

    def test_equal_width_bins_must_divide_range(self):
        with pytest.raises(ConfigurationError):
            equal_width_bins(1, 8, 3)
