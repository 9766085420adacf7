"""Health probes, host checks and the watchdog reconciler."""

__all__ = ["WatchdogReconciler", "probe"]


def __getattr__(name: str):
    if name == "WatchdogReconciler":
        from services.watchdog import WatchdogReconciler

        return WatchdogReconciler
    if name == "probe":
        from services.diagnostics import probe

        return probe
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
