"""Network mode engine and its helpers."""

__all__ = ["NetworkMode", "NetworkModeEngine", "probe"]


def __getattr__(name: str):
    if name == "NetworkMode":
        from network.modes import NetworkMode

        return NetworkMode
    if name == "NetworkModeEngine":
        from network.engine import NetworkModeEngine

        return NetworkModeEngine
    if name == "probe":
        from network.diagnostics import probe

        return probe
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
