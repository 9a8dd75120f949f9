from __future__ import annotations

import secrets
from typing import Any, Mapping

import docker
from docker.errors import DockerException, ImageNotFound, NotFound
from pydantic import SecretStr

from .db import EventLog
from .declarations import ServiceDeclaration
from .driver import ApplyResult, desired_state_hash, plain_env
from .errors import DriverApplyError
from .runtime import ServiceStatus

LABEL_UNIT = "sdo.unit"
LABEL_SERVICE = "sdo.service"
LABEL_HASH = "sdo.hash"

_NS = 1_000_000_000


def _healthcheck(declaration: ServiceDeclaration) -> dict[str, Any] | None:
    hc = declaration.healthcheck
    if hc is None:
        return None
    return {
        "test": list(hc.test),
        "interval": int(hc.interval_s * _NS),
        "timeout": int(hc.timeout_s * _NS),
        "retries": hc.retries,
    }


class DockerDriver:
    """Service driver backed by a local Docker daemon.

    Every service of a unit runs on the unit's bridge network, reachable by
    its service name. Containers are labelled with unit, service and a
    desired-state hash so a later run can tell whether anything changed.
    """

    def __init__(
        self,
        unit: str,
        network_prefix: str = "sdo",
        events: EventLog | None = None,
        client: docker.DockerClient | None = None,
        timeout_s: float = 30.0,
    ):
        self.unit = unit
        self.network = f"{network_prefix}-{unit}"
        self.events = events or EventLog()
        self._client = client
        self._timeout_s = timeout_s

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            self._client = docker.from_env(timeout=max(1, int(self._timeout_s)))
        return self._client

    def ensure_network(self) -> None:
        try:
            self.client.networks.get(self.network)
        except NotFound:
            self.client.networks.create(self.network, driver="bridge", labels={LABEL_UNIT: self.unit})
            self.events.info(f"Created docker network '{self.network}'.")

    def ensure_image(self, image: str) -> None:
        try:
            self.client.images.get(image)
        except ImageNotFound:
            self.events.info(f"Pulling image {image}")
            self.client.images.pull(image)

    def containers(self, service: str) -> list[Any]:
        filters = {"label": [f"{LABEL_UNIT}={self.unit}", f"{LABEL_SERVICE}={service}"]}
        found = self.client.containers.list(all=True, filters=filters)
        # newest first
        return sorted(found, key=lambda c: c.attrs.get("Created", ""), reverse=True)

    def apply(self, declaration: ServiceDeclaration, config: Mapping[str, SecretStr | str]) -> ApplyResult:
        try:
            return self._apply(declaration, config)
        except DockerException as e:
            raise DriverApplyError(f"docker: {type(e).__name__}: {e}") from e

    def _apply(self, declaration: ServiceDeclaration, config: Mapping[str, SecretStr | str]) -> ApplyResult:
        service = declaration.name
        want = desired_state_hash(declaration, config)
        existing = self.containers(service)

        current = [c for c in existing if c.labels.get(LABEL_HASH) == want and c.status == "running"]
        if current:
            keep = current[0]
            stale = [c for c in existing if c.id != keep.id]
            for c in stale:
                self._remove(c, service)
            if stale:
                return ApplyResult(True, f"removed {len(stale)} stale container(s)")
            return ApplyResult(False, "unchanged")

        self.ensure_network()
        self.ensure_image(declaration.image)

        # Published host ports cannot be bound twice; replace in place.
        if declaration.ports:
            for c in existing:
                self._remove(c, service)
            existing = []

        name = self._create_and_start(declaration, config, want)
        for c in existing:
            self._remove(c, service)
        if existing:
            return ApplyResult(True, f"rolling update to {name}")
        return ApplyResult(True, f"created {name}")

    def _create_and_start(
        self, declaration: ServiceDeclaration, config: Mapping[str, SecretStr | str], want: str
    ) -> str:
        service = declaration.name
        name = f"{self.network}-{service}-{secrets.token_hex(3)}"
        labels = {LABEL_UNIT: self.unit, LABEL_SERVICE: service, LABEL_HASH: want}
        container = self.client.containers.create(
            declaration.image,
            command=declaration.command,
            name=name,
            environment=plain_env(config),
            labels=labels,
            ports={f"{cport}/tcp": hport for cport, hport in declaration.ports.items()},
            volumes={vol: {"bind": path, "mode": "rw"} for vol, path in declaration.volumes.items()},
            healthcheck=_healthcheck(declaration),
            restart_policy={"Name": "unless-stopped"},
            # only the unit network, so the default bridge is never joined
            network=self.network,
            networking_config={self.network: self.client.api.create_endpoint_config(aliases=[service])},
        )
        container.start()
        self.events.info(f"Started container {name} from image {declaration.image}", service=service)
        return name

    def _remove(self, container: Any, service: str) -> None:
        try:
            container.remove(force=True)
            self.events.info(f"Removed container {container.name}", service=service)
        except NotFound:
            return

    def status(self, service_id: str) -> ServiceStatus:
        try:
            found = self.containers(service_id)
            if not found:
                return ServiceStatus.pending("no container")
            c = found[0]
            c.reload()
        except NotFound:
            return ServiceStatus.pending("container disappeared")
        except DockerException as e:
            return ServiceStatus.applying(f"status unavailable: {type(e).__name__}: {e}")
        return container_status(c.attrs.get("State") or {})


def container_status(state: Mapping[str, Any]) -> ServiceStatus:
    """Map a container's ``State`` block to a service status."""
    status = state.get("Status", "unknown")
    exit_code = state.get("ExitCode")
    error = state.get("Error") or ""

    if status == "running":
        health = (state.get("Health") or {}).get("Status")
        if health in (None, "healthy"):
            return ServiceStatus.ready()
        if health == "unhealthy":
            return ServiceStatus.applying("container healthcheck reports unhealthy")
        return ServiceStatus.applying(f"container health: {health}")
    if status in {"created"}:
        return ServiceStatus.applying("container created, not started")
    if status in {"restarting", "exited", "dead"}:
        reason = f"container {status} (exit code {exit_code})"
        if error:
            reason += f": {error}"
        if state.get("OOMKilled"):
            reason += " [OOMKilled]"
        return ServiceStatus.failed(reason)
    return ServiceStatus.applying(f"container {status}")
