"""Loading service declarations from YAML manifests.

Two layouts are accepted:

* a single file with a ``units`` mapping::

      units:
        platform:
          services:
            - name: postgres
              image: postgres:15
              ...

* a directory holding one service declaration per ``*.yaml``/``*.yml``
  file; the unit is named after the directory.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .declarations import ServiceDeclaration
from .errors import ManifestError


def _read_yaml(path: Path) -> Any:
    try:
        with path.open("r", encoding="utf-8") as f:
            return yaml.safe_load(f)
    except OSError as e:
        raise ManifestError(f"{path}: cannot read: {e}") from e
    except yaml.YAMLError as e:
        raise ManifestError(f"{path}: invalid YAML: {e}") from e


def _declaration(raw: Any, where: str) -> ServiceDeclaration:
    if not isinstance(raw, dict):
        raise ManifestError(f"{where}: a service declaration must be a mapping")
    try:
        return ServiceDeclaration.model_validate(raw)
    except ValidationError as e:
        name = raw.get("name", "?")
        raise ManifestError(f"{where}: service {name!r}: {e}") from e


class DeclarationStore:
    """Read-only view of the declared units and their services."""

    def __init__(self, units: dict[str, list[ServiceDeclaration]]):
        self._units = units

    @classmethod
    def load(cls, path: str | Path) -> "DeclarationStore":
        p = Path(path)
        if p.is_dir():
            return cls.from_directory(p)
        return cls.from_file(p)

    @classmethod
    def from_file(cls, path: Path) -> "DeclarationStore":
        data = _read_yaml(path)
        if not isinstance(data, dict) or not isinstance(data.get("units"), dict):
            raise ManifestError(f"{path}: expected a top-level 'units' mapping")
        units: dict[str, list[ServiceDeclaration]] = {}
        for unit, body in data["units"].items():
            services = (body or {}).get("services") if isinstance(body, dict) else None
            if not isinstance(services, list):
                raise ManifestError(f"{path}: unit {unit!r} needs a 'services' list")
            units[str(unit)] = [_declaration(s, f"{path}:{unit}[{i}]") for i, s in enumerate(services)]
        return cls(units)

    @classmethod
    def from_directory(cls, path: Path) -> "DeclarationStore":
        files = sorted([*path.glob("*.yaml"), *path.glob("*.yml")])
        if not files:
            raise ManifestError(f"{path}: no *.yaml manifests found")
        return cls({path.name: [_declaration(_read_yaml(f), str(f)) for f in files]})

    def units(self) -> list[str]:
        return sorted(self._units)

    def get(self, unit: str | None = None) -> tuple[str, list[ServiceDeclaration]]:
        """Declarations of ``unit``; without a name, the only unit there is."""
        if unit is None:
            if len(self._units) != 1:
                raise ManifestError(f"several units declared ({', '.join(self.units())}); pick one with --target")
            unit = next(iter(self._units))
        if unit not in self._units:
            raise ManifestError(f"unknown unit {unit!r}; declared: {', '.join(self.units()) or 'none'}")
        return unit, list(self._units[unit])
