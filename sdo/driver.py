from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Mapping, Protocol

from pydantic import SecretStr

from .declarations import ServiceDeclaration
from .runtime import ServiceStatus


@dataclass(frozen=True)
class ApplyResult:
    changed: bool
    detail: str = ""


class ServiceDriver(Protocol):
    """Creates/updates running services and reports their status.

    ``apply`` must be idempotent: an unchanged declaration is a no-op that
    still succeeds (``changed=False``). Failures raise DriverApplyError.
    ``status`` is a side-effect-free point-in-time read.
    """

    def apply(self, declaration: ServiceDeclaration, config: Mapping[str, SecretStr | str]) -> ApplyResult:
        ...

    def status(self, service_id: str) -> ServiceStatus:
        ...


def plain_env(config: Mapping[str, SecretStr | str]) -> dict[str, str]:
    """Unwrap resolved config for handing to the platform. Never log the result."""
    return {k: v.get_secret_value() if isinstance(v, SecretStr) else v for k, v in config.items()}


def desired_state_hash(declaration: ServiceDeclaration, config: Mapping[str, SecretStr | str]) -> str:
    """Digest of everything that should trigger an update when it changes.

    Resolved values only enter as part of the digest, so a rotated secret
    changes the hash without the value being stored anywhere.
    """
    doc = {
        "image": declaration.image,
        "command": declaration.command,
        "ports": {str(k): v for k, v in sorted(declaration.ports.items())},
        "volumes": dict(sorted(declaration.volumes.items())),
        "healthcheck": declaration.healthcheck.model_dump() if declaration.healthcheck else None,
        "env": dict(sorted(plain_env(config).items())),
    }
    raw = json.dumps(doc, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:32]
