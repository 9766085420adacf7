"""Storage package utilities."""

__all__ = ["NetworkConfig", "NetworkConfigStore", "probe"]


def __getattr__(name: str):
    if name in {"NetworkConfig", "NetworkConfigStore"}:
        from storage import network_config

        return getattr(network_config, name)
    if name == "probe":
        from storage.diagnostics import probe

        return probe
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
