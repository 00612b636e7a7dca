"""配置模块：统一的应用配置管理。"""

from .settings import Environment, Settings, TransientBackend, get_settings, settings

__all__ = ["Settings", "Environment", "TransientBackend", "get_settings", "settings"]
