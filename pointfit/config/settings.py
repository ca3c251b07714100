#!/usr/bin/env python3
"""
Configuration and settings management for pointfit
"""

import copy
import json
import os
from typing import Dict, Any, Optional

from ..core.icp import RegistrationConfig
from ..core.ransac import RansacConfig
from ..utils.logging import get_logger
from ..utils.validation import validate_config

logger = get_logger(__name__)


class ConfigManager:
    """Manages configuration settings for the registration and fitting engines"""

    def __init__(self, config_file: Optional[str] = None):
        self.config_file = config_file or "pointfit_config.json"
        self.config = self.load_default_config()
        self.load_config()

    def load_default_config(self) -> Dict[str, Any]:
        """Load default configuration settings"""
        return {
            # ICP parameters
            "registration": RegistrationConfig().to_dict(),

            # RANSAC parameters
            "robust_estimation": RansacConfig().to_dict(),

            "logging": {
                "level": "WARNING",
            },
        }

    def load_config(self) -> bool:
        """Load configuration from file"""
        if not os.path.exists(self.config_file):
            logger.debug("Configuration file not found: %s", self.config_file)
            return False

        try:
            with open(self.config_file, 'r') as f:
                loaded_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Error loading configuration: %s", e)
            return False

        # Merge with defaults (preserve structure)
        self.merge_config(self.config, loaded_config)
        logger.info("Configuration loaded from %s", self.config_file)
        return True

    def save_config(self) -> bool:
        """Save configuration to file"""
        return self.export_config(self.config_file)

    def merge_config(self, default: Dict[str, Any], loaded: Dict[str, Any]) -> None:
        """Recursively merge loaded configuration with defaults"""
        for key, value in loaded.items():
            if key in default and isinstance(value, dict) and isinstance(default[key], dict):
                self.merge_config(default[key], value)
            else:
                default[key] = value

    def get(self, key_path: str, default: Any = None) -> Any:
        """Get configuration value using dot notation"""
        value = self.config
        try:
            for key in key_path.split('.'):
                value = value[key]
            return value
        except (KeyError, TypeError):
            return default

    def set(self, key_path: str, value: Any) -> None:
        """Set configuration value using dot notation"""
        keys = key_path.split('.')
        config = self.config

        # Navigate to the parent of the target key
        for key in keys[:-1]:
            if not isinstance(config.get(key), dict):
                config[key] = {}
            config = config[key]

        config[keys[-1]] = value

    def get_registration_config(self) -> RegistrationConfig:
        return RegistrationConfig.from_dict(self.config["registration"])

    def set_registration_params(self, params: Dict[str, Any]) -> None:
        self.config["registration"].update(params)

    def get_ransac_config(self) -> RansacConfig:
        return RansacConfig.from_dict(self.config["robust_estimation"])

    def set_ransac_params(self, params: Dict[str, Any]) -> None:
        self.config["robust_estimation"].update(params)

    def validate_config(self) -> bool:
        """Validate configuration values"""
        is_valid, message = validate_config(self.config)
        if not is_valid:
            logger.warning("Invalid configuration: %s", message)
        return is_valid

    def reset_to_defaults(self) -> None:
        """Reset configuration to defaults"""
        self.config = self.load_default_config()

    def export_config(self, filename: str) -> bool:
        """Export configuration to file"""
        try:
            config_dir = os.path.dirname(filename)
            if config_dir:
                os.makedirs(config_dir, exist_ok=True)
            with open(filename, 'w') as f:
                json.dump(self.config, f, indent=2)
        except OSError as e:
            logger.error("Error exporting configuration: %s", e)
            return False

        logger.info("Configuration saved to %s", filename)
        return True

    def import_config(self, filename: str) -> bool:
        """Import configuration from file"""
        try:
            with open(filename, 'r') as f:
                imported_config = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Error importing configuration: %s", e)
            return False

        merged = copy.deepcopy(self.config)
        self.merge_config(merged, imported_config)
        is_valid, message = validate_config(merged)
        if not is_valid:
            logger.error("Rejected configuration from %s: %s", filename, message)
            return False

        self.config = merged
        return True

    def get_preset_config(self, preset_name: str) -> Optional[Dict[str, Any]]:
        """Get preset configuration"""
        presets = {
            "fast": {
                "registration": {
                    "max_iterations": 10,
                    "convergence_tolerance": 1e-3,
                    "correspondences_fraction": 0.5,
                },
                "robust_estimation": {
                    "max_iterations": 100,
                },
            },
            "accurate": {
                "registration": {
                    "max_iterations": 100,
                    "convergence_tolerance": 1e-6,
                    "max_optimization_step_iterations": 5,
                },
                "robust_estimation": {
                    "max_iterations": 5000,
                    "re_estimate": True,
                },
            },
            "robust": {
                "registration": {
                    "correspondences_fraction": 0.8,
                    "metric": "combined",
                },
                "robust_estimation": {
                    "max_iterations": 2000,
                },
            },
        }

        return copy.deepcopy(presets.get(preset_name))

    def apply_preset(self, preset_name: str) -> bool:
        """Apply preset configuration"""
        preset = self.get_preset_config(preset_name)
        if preset:
            self.merge_config(self.config, preset)
            return True
        return False

    def get_config_summary(self) -> Dict[str, Any]:
        """Get configuration summary for display"""
        reg = self.config["registration"]
        ransac = self.config["robust_estimation"]
        return {
            "registration": {
                "metric": reg["metric"],
                "correspondences": reg["correspondences_type"],
                "max_iterations": reg["max_iterations"],
                "tolerance": reg["convergence_tolerance"],
            },
            "robust_estimation": {
                "max_iterations": ransac["max_iterations"],
                "inlier_threshold": ransac["max_inlier_residual"],
                "re_estimate": ransac["re_estimate"],
            },
        }
