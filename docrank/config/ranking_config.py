"""
Ranking Configuration System
Loads, saves and validates the tunables of the ranking pipeline.
"""

from typing import Optional, Union
import yaml
from pathlib import Path
from pydantic import ValidationError

from docrank.config.settings import settings
from docrank.models.ranking import RankingConfiguration
from docrank.utils.logger import LoggerMixin


class RankingConfigManager(LoggerMixin):
    """Manages ranking configuration loading and validation."""

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        """Initialize the config manager."""
        self.config_path = Path(config_path) if config_path else None
        self._config: Optional[RankingConfiguration] = None

    def load_config(self, config_path: Optional[Union[str, Path]] = None) -> RankingConfiguration:
        """
        Load ranking configuration from a YAML file or use defaults.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            RankingConfiguration instance
        """
        if config_path:
            self.config_path = Path(config_path)

        if self.config_path and self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    config_data = yaml.safe_load(f) or {}

                self._config = RankingConfiguration(**config_data)
                self.logger.info(f"Loaded ranking config from {self.config_path}")

            except (yaml.YAMLError, ValidationError, TypeError) as e:
                self.logger.warning(f"Failed to load config from {self.config_path}: {e}")
                self.logger.info("Using default configuration")
                self._config = RankingConfiguration()
        else:
            self.logger.info("No config file found, using defaults")
            self._config = RankingConfiguration()

        return self._config

    def get_config(self) -> RankingConfiguration:
        """Get current configuration, loading if necessary."""
        if self._config is None:
            return self.load_config()
        return self._config

    def save_config(self, config: RankingConfiguration, path: Optional[Union[str, Path]] = None) -> None:
        """
        Save configuration to a YAML file.

        Args:
            config: RankingConfiguration to save
            path: Optional path to save to, uses self.config_path if not provided
        """
        save_path = Path(path) if path else self.config_path
        if not save_path:
            raise ValueError("No save path specified")

        save_path.parent.mkdir(parents=True, exist_ok=True)

        config_dict = config.model_dump(exclude_none=True, mode='json')

        with open(save_path, 'w') as f:
            yaml.dump(config_dict, f, default_flow_style=False, indent=2)

        self.logger.info(f"Saved ranking config to {save_path}")

    def validate_config(self, config: RankingConfiguration) -> bool:
        """
        Check consistency rules that span several sections.

        Args:
            config: Configuration to validate

        Returns:
            True if valid, False otherwise
        """
        if config.rerank.batch_size > config.search.max_candidate_window:
            self.logger.warning("Re-rank batch size exceeds the candidate window")
            return False

        if not config.gateway.fallback_models:
            self.logger.warning("Fallback model list is empty, bootstrap cannot install a model")
            return False

        if config.retry.max_delay >= config.circuit_breaker.reset_timeout:
            self.logger.warning("Retry backoff must stay below the circuit reset timeout")
            return False

        self.logger.info("Ranking configuration validation passed")
        return True


# Global config manager instance
_config_manager: Optional[RankingConfigManager] = None


def get_ranking_config_manager(config_path: Optional[Union[str, Path]] = None) -> RankingConfigManager:
    """Get global ranking configuration manager."""
    global _config_manager
    if _config_manager is None:
        _config_manager = RankingConfigManager(config_path or settings.RANKING_CONFIG_PATH)
    return _config_manager


def get_ranking_config(config_path: Optional[Union[str, Path]] = None) -> RankingConfiguration:
    """Get current ranking configuration."""
    manager = get_ranking_config_manager(config_path)
    return manager.get_config()
