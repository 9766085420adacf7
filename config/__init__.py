"""Configuration package utilities."""

__all__ = ["ApplianceSettings", "ConfigController", "get_settings", "load_settings"]


def __getattr__(name: str):
    if name == "ConfigController":
        from config.controller import ConfigController

        return ConfigController
    if name in {"ApplianceSettings", "get_settings", "load_settings"}:
        from config import settings

        return getattr(settings, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
