import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "../../")))

import json

import pytest

from config import CONFIG, ConfigManager

pytestmark = pytest.mark.unit


class TestConfigManager:
    @pytest.fixture
    def config(self, monkeypatch):
        for key in list(os.environ):
            if key.startswith("NMFSTATS_"):
                monkeypatch.delenv(key)
        return ConfigManager()

    def test_defaults(self, config):
        assert config.get("analysis.survival_default_group_size") == 100
        assert config.get("analysis.hr_survival_lower") == 0.05
        assert config.get("analysis.hr_survival_upper") == 0.99
        assert config.get("analysis.min_stratum_size") == 10
        assert config.get("analysis.stepwise_threshold") == 0.05
        assert config.get("logging.file_enabled") is False

    def test_missing_key_default(self, config):
        assert config.get("analysis.not_a_key", "fallback") == "fallback"
        assert config.get("nope.deeper.key") is None

    def test_update(self, config):
        config.update("analysis.stepwise_threshold", 0.01)
        assert config.get("analysis.stepwise_threshold") == 0.01
        with pytest.raises(KeyError):
            config.update("analysis.unknown", 1)

    def test_set_nested_create(self, config):
        config.set_nested("extra.section.value", 3, create=True)
        assert config.get("extra.section.value") == 3
        with pytest.raises(KeyError):
            config.set_nested("other.value", 1)

    def test_get_section_is_copy(self, config):
        section = config.get_section("analysis")
        section["pca_max_iter"] = 1
        assert config.get("analysis.pca_max_iter") == 100

    def test_to_json(self, config):
        data = json.loads(config.to_json())
        assert data["analysis"]["cluster_method"] == "ward"

    def test_validate_defaults(self, config):
        is_valid, errors = config.validate()
        assert is_valid
        assert errors == []

    def test_validate_catches_errors(self, config):
        config.update("analysis.cluster_method", "centroid")
        config.update("analysis.hr_survival_lower", 0.995)
        is_valid, errors = config.validate()
        assert not is_valid
        assert len(errors) == 2


class TestEnvOverrides:
    def test_typed_overrides(self, monkeypatch):
        monkeypatch.setenv("NMFSTATS_ANALYSIS_PCA_MAX_ITER", "50")
        monkeypatch.setenv("NMFSTATS_ANALYSIS_HR_MAX", "20")
        monkeypatch.setenv("NMFSTATS_ANALYSIS_HEATMAP_ZSCORE", "true")
        monkeypatch.setenv("NMFSTATS_ANALYSIS_PCA_RANDOM_SEED", "7")
        monkeypatch.setenv("NMFSTATS_ANALYSIS_CLUSTER_METHOD", "average")
        config = ConfigManager()

        assert config.get("analysis.pca_max_iter") == 50
        assert config.get("analysis.hr_max") == 20.0
        assert config.get("analysis.heatmap_zscore") is True
        assert config.get("analysis.pca_random_seed") == 7
        assert config.get("analysis.cluster_method") == "average"

    def test_invalid_override_warns(self, monkeypatch):
        monkeypatch.setenv("NMFSTATS_ANALYSIS_PCA_MAX_ITER", "many")
        with pytest.warns(UserWarning, match="NMFSTATS_ANALYSIS_PCA_MAX_ITER"):
            config = ConfigManager()
        assert config.get("analysis.pca_max_iter") == 100

    def test_unknown_key_warns(self, monkeypatch):
        monkeypatch.setenv("NMFSTATS_ANALYSIS_DOES_NOT_EXIST", "1")
        with pytest.warns(UserWarning):
            ConfigManager()


def test_global_instance():
    assert isinstance(CONFIG, ConfigManager)
    assert "sections" in repr(CONFIG)
