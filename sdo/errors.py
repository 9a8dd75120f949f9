from __future__ import annotations


class SDOError(Exception):
    """Base class for orchestrator errors."""


# Structural errors: raised before anything is applied, never retried.


class InvalidDeclaration(SDOError):
    pass


class DuplicateDeclaration(InvalidDeclaration):
    def __init__(self, name: str):
        super().__init__(f"duplicate service declaration: {name!r}")
        self.name = name


class UnknownDependency(InvalidDeclaration):
    def __init__(self, name: str, required_by: str | None = None):
        msg = f"unknown dependency: {name!r}"
        if required_by:
            msg += f" (required by {required_by!r})"
        super().__init__(msg)
        self.name = name
        self.required_by = required_by


class ManifestError(InvalidDeclaration):
    """A manifest file could not be read or does not describe valid declarations."""


class CycleError(SDOError):
    def __init__(self, members: list[str]):
        super().__init__("dependency cycle: " + " -> ".join(members + members[:1]))
        self.members = list(members)


# Step errors: attached to the failing step, halt the run.


class SecretResolutionError(SDOError):
    pass


class SecretNotFound(SecretResolutionError):
    pass


class SecretAccessDenied(SecretResolutionError):
    pass


class DriverApplyError(SDOError):
    pass


class ExternalCallTimeout(SDOError):
    def __init__(self, what: str, timeout_s: float):
        super().__init__(f"{what} did not finish within {timeout_s:g}s")
        self.what = what
        self.timeout_s = timeout_s


class ReadinessTimeout(SDOError):
    pass


class ReadinessFailed(SDOError):
    pass
