from __future__ import annotations


class AssetSweepError(RuntimeError):
    """Base class for scanner errors."""


class ResolutionError(AssetSweepError):
    """The target name or address could not be resolved."""


class UnreachableTargetError(AssetSweepError):
    """The target did not answer the reachability check."""


class PortProbeTimeout(AssetSweepError):
    """A TCP connect attempt timed out. Callers record the port as closed."""


class IntrospectionError(AssetSweepError):
    """A single introspection strategy failed; the cascade moves on."""


class JobNotFoundError(AssetSweepError):
    def __init__(self, job_id: str) -> None:
        super().__init__(f"Scan job not found: {job_id}")
        self.job_id = job_id


class PermissionDeniedError(AssetSweepError):
    def __init__(self, job_id: str, owner: str) -> None:
        super().__init__(f"{owner} does not have permission to modify scan job {job_id}")
        self.job_id = job_id
        self.owner = owner
