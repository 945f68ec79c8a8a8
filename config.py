"""
Configuration for the NMF Subtype Statistics Core

All tunable constants of the analysis core live in one nested dictionary,
read with dot paths:

    from config import CONFIG

    CONFIG.get("analysis.pca_max_iter")               # 100
    CONFIG.get("analysis.unknown", default=0)         # 0
    CONFIG.update("analysis.stepwise_threshold", 0.01)

Environment variables NMFSTATS_<SECTION>_<KEY> override defaults at start-up,
e.g. NMFSTATS_ANALYSIS_MIN_STRATUM_SIZE=20.
"""

import copy
import json
import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

VALID_CLUSTER_METHODS = ["none", "single", "complete", "average", "ward"]
VALID_DISTANCE_METRICS = ["euclidean", "manhattan", "correlation"]
VALID_LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

ENV_PREFIX = "NMFSTATS_"


def default_config() -> Dict[str, Any]:
    """Fresh copy of the built-in defaults."""
    return {
        # ---------- analysis ----------
        "analysis": {
            # clustering / heatmap
            "cluster_method": "ward",
            "cluster_metric": "euclidean",
            "heatmap_zscore": False,
            # PCA by power iteration
            "pca_max_iter": 100,
            "pca_tolerance": 1e-10,
            "pca_random_seed": None,  # None: new entropy on every call
            "pca_scree_max_components": 10,
            "pca_min_variance_fraction": 1e-6,  # of the trace
            # survival curves
            "survival_default_group_size": 100,
            # Cox PH from curves
            "hr_survival_lower": 0.05,
            "hr_survival_upper": 0.99,
            "hr_max": 100.0,
            "ci_z": 1.96,
            "min_stratum_size": 10,
            # stepwise search
            "stepwise_threshold": 0.05,
            # display
            "pvalue_format_small": 0.0001,
        },
        # ---------- logging ----------
        "logging": {
            "enabled": True,
            "level": "INFO",
            "format": "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
            "date_format": "%Y-%m-%d %H:%M:%S",
            "console_enabled": True,
            "console_level": "INFO",
            "file_enabled": False,
            "log_dir": "logs",
            "log_file": "nmf_stats.log",
            "max_log_size": 10 * 1024 * 1024,
            "backup_count": 5,
            "log_analysis_operations": True,
            "log_performance": True,
        },
        # ---------- performance ----------
        "performance": {
            "warn_cluster_size": 500,  # merge loop is O(n^3)
        },
        # ---------- debug ----------
        "debug": {
            "enabled": False,
        },
    }


class ConfigManager:
    """
    Nested configuration with dot-path access, runtime updates,
    environment overrides and validation.
    """

    def __init__(self, config_dict: Optional[Dict] = None):
        self._config = config_dict if config_dict is not None else default_config()
        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        """
        NMFSTATS_ANALYSIS_PCA_MAX_ITER=50 sets analysis.pca_max_iter to 50: the
        first word after the prefix names the section, the rest the key. Values
        take the type of the current setting; unusable overrides only warn.
        """
        for env_key, raw in os.environ.items():
            if not env_key.startswith(ENV_PREFIX):
                continue
            section, _, name = env_key[len(ENV_PREFIX):].lower().partition("_")
            if not section or not name:
                continue
            path = f"{section}.{name}"
            try:
                self.update(path, self._coerce(self.get(path), raw))
            except (KeyError, ValueError, TypeError) as e:
                warnings.warn(f"Ignoring {env_key}={raw!r}: {e}", stacklevel=2)

    @staticmethod
    def _coerce(current: Any, raw: str) -> Any:
        """
        Convert an environment string to the type of the current value.

        Booleans accept 1/0, true/false, yes/no, on/off. An unset (None) value
        becomes an int when the string parses as one (a random seed), else the string.
        """
        if isinstance(current, bool):
            lowered = raw.strip().lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
            raise ValueError(f"not a boolean: {raw!r}")
        if isinstance(current, int):
            return int(raw)
        if isinstance(current, float):
            return float(raw)
        if current is None:
            try:
                return int(raw)
            except ValueError:
                return raw
        return raw

    def _parent(self, key: str, create: bool = False) -> Tuple[Dict[str, Any], str]:
        """Dict holding the last segment of `key`, and that segment."""
        *parents, leaf = key.split(".")
        node = self._config
        for part in parents:
            if part not in node:
                if not create:
                    raise KeyError(f"Config section '{part}' does not exist (in '{key}')")
                node[part] = {}
            node = node[part]
            if not isinstance(node, dict):
                raise KeyError(f"'{part}' in '{key}' is a value, not a section")
        return node, leaf

    def get(self, key: str, default: Any = None) -> Any:
        """Value at a dot path such as "analysis.ci_z", or `default` when absent."""
        node: Any = self._config
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return default
            node = node[part]
        return node

    def update(self, key: str, value: Any) -> None:
        """
        Replace an existing setting.

        Raises:
            KeyError: If the path does not exist.
        """
        node, leaf = self._parent(key)
        if leaf not in node:
            raise KeyError(f"Config key '{key}' does not exist")
        node[leaf] = value

    def set_nested(self, key: str, value: Any, create: bool = False) -> None:
        """Set a value, creating missing sections when `create` is true."""
        node, leaf = self._parent(key, create=create)
        node[leaf] = value

    def get_section(self, section: str) -> Dict[str, Any]:
        """Deep copy of one top-level section ({} if missing)."""
        return copy.deepcopy(self.get(section, {}))

    def to_dict(self) -> Dict[str, Any]:
        return copy.deepcopy(self._config)

    def to_json(self, filepath: Optional[str] = None, pretty: bool = True) -> str:
        """JSON dump of the whole configuration, optionally written to `filepath`."""
        text = json.dumps(self._config, indent=2 if pretty else None)
        if filepath:
            Path(filepath).write_text(text)
        return text

    def validate(self) -> Tuple[bool, List[str]]:
        """
        Check the settings the analyses depend on.

        Returns:
            tuple: (is_valid, errors)
        """
        errors = []

        threshold = self.get("analysis.stepwise_threshold")
        if threshold is None or not 0 < threshold < 1:
            errors.append("analysis.stepwise_threshold must lie in (0, 1)")

        lower = self.get("analysis.hr_survival_lower")
        upper = self.get("analysis.hr_survival_upper")
        if lower is None or upper is None or not 0 < lower < upper < 1:
            errors.append("analysis.hr_survival_lower/upper must satisfy 0 < lower < upper < 1")

        if self.get("analysis.cluster_method") not in VALID_CLUSTER_METHODS:
            errors.append(f"analysis.cluster_method must be one of {VALID_CLUSTER_METHODS}")

        if self.get("analysis.cluster_metric") not in VALID_DISTANCE_METRICS:
            errors.append(f"analysis.cluster_metric must be one of {VALID_DISTANCE_METRICS}")

        max_iter = self.get("analysis.pca_max_iter")
        if not isinstance(max_iter, int) or max_iter < 1:
            errors.append("analysis.pca_max_iter must be a positive integer")

        if str(self.get("logging.level")).upper() not in VALID_LOG_LEVELS:
            errors.append(f"logging.level must be one of {VALID_LOG_LEVELS}")

        return not errors, errors

    def __repr__(self) -> str:
        return f"ConfigManager({len(self._config)} sections)"


CONFIG = ConfigManager()
