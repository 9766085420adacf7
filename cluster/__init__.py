"""Container engine, swarm and secrets management."""

__all__ = ["ClusterBootstrap", "DockerCli", "SecretsManager", "probe"]


def __getattr__(name: str):
    if name == "ClusterBootstrap":
        from cluster.bootstrap import ClusterBootstrap

        return ClusterBootstrap
    if name == "DockerCli":
        from cluster.docker import DockerCli

        return DockerCli
    if name == "SecretsManager":
        from cluster.secrets import SecretsManager

        return SecretsManager
    if name == "probe":
        from cluster.diagnostics import probe

        return probe
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
