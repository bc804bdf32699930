"""
Application settings for HedgeCraft.

Process-level settings (logging, config file locations) come from the
environment or a `.env` file. Engine parameters live in `risk.yaml` and are
validated into an EngineConfig (see hedgecraft.config.engine).
"""
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_DIR = Path(__file__).parent
DEFAULT_RISK_CONFIG = CONFIG_DIR / "risk.yaml"


class Settings(BaseSettings):
    """Minimal settings - only process configuration."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )
    
    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")  # "json" or "console"
    
    # Engine parameters file
    risk_config_path: str = Field(
        default=str(DEFAULT_RISK_CONFIG),
        alias="HEDGECRAFT_RISK_CONFIG",
    )


# Global instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get or create settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings."""
    global _settings
    _settings = Settings()
    return _settings


# Risk configuration loaded from YAML
_risk_config: Optional[dict] = None


def load_risk_config(path: Optional[str] = None) -> dict:
    """
    Load risk configuration from YAML file.
    
    An explicit path is read fresh every time; the default path is cached.
    """
    global _risk_config
    
    import yaml
    
    if path is not None:
        with open(path, "r") as f:
            return yaml.safe_load(f) or {}
    
    if _risk_config is None:
        risk_yaml_path = Path(get_settings().risk_config_path)
        if not risk_yaml_path.exists():
            raise FileNotFoundError(f"Risk config not found: {risk_yaml_path}")
        
        with open(risk_yaml_path, "r") as f:
            _risk_config = yaml.safe_load(f) or {}
    
    return _risk_config
