# Configuration
from .config_manager import DEFAULT_CONFIG, ConfigManager, load_config

__all__ = ["ConfigManager", "DEFAULT_CONFIG", "load_config"]
