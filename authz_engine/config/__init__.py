"""Engine configuration loaded from the environment."""

from authz_engine.config.settings import EngineSettings, validate_settings

__all__ = ['EngineSettings', 'validate_settings']
