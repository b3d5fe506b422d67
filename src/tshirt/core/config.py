"""
Configuration system with validation and environment awareness.
Based on Pydantic Settings for robust configuration management.
"""
from typing import Literal, Optional

from pydantic import Field, ConfigDict, model_validator
from pydantic_settings import BaseSettings

from tshirt.core.constants import (
    DEFAULT_MASS_BALANCE_ABS_TOLERANCE_M,
    DEFAULT_MASS_BALANCE_REL_TOLERANCE,
)


class MassBalanceConfig(BaseSettings):
    """Configuration for the post-hoc conservation check"""

    enabled: bool = Field(True, description="Verify conservation after every timestep")
    abs_tolerance_meters: float = Field(
        DEFAULT_MASS_BALANCE_ABS_TOLERANCE_M, ge=0,
        description="Absolute residual allowed per timestep (m)"
    )
    rel_tolerance: float = Field(
        DEFAULT_MASS_BALANCE_REL_TOLERANCE, ge=0,
        description="Residual allowed relative to the largest flux term"
    )

    model_config = ConfigDict(env_prefix="TSHIRT_MASS_BALANCE_", case_sensitive=False)


class TshirtConfig(BaseSettings):
    """Main configuration for the tshirt model"""

    project_name: str = "tshirt"

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    mass_balance: MassBalanceConfig = Field(default_factory=MassBalanceConfig)

    model_config = ConfigDict(
        env_prefix="TSHIRT_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_config(self):
        """Cross-field validation"""
        if self.mass_balance.enabled and (
            self.mass_balance.abs_tolerance_meters == 0.0
            and self.mass_balance.rel_tolerance == 0.0
        ):
            raise ValueError("Mass balance check needs a non-zero tolerance")
        return self


# Global configuration instance
_config: Optional[TshirtConfig] = None


def get_config() -> TshirtConfig:
    """Get or create configuration instance (singleton pattern)"""
    global _config

    if _config is None:
        _config = TshirtConfig()

    return _config


def set_config(config: Optional[TshirtConfig]):
    """Set configuration (useful for testing)"""
    global _config
    _config = config
