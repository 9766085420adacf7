"""Boot orchestration, supervision and recovery."""

__all__ = ["BootMarkers", "BootOrchestrator", "detect_boot_mode"]


def __getattr__(name: str):
    if name == "BootMarkers":
        from boot.markers import BootMarkers

        return BootMarkers
    if name == "BootOrchestrator":
        from boot.orchestrator import BootOrchestrator

        return BootOrchestrator
    if name == "detect_boot_mode":
        from boot.detect import detect_boot_mode

        return detect_boot_mode
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
