"""Secret/config providers.

A provider turns a ``SecretRef`` into a value at the moment the owning
service is applied. Values come back wrapped in ``pydantic.SecretStr`` so a
stray ``repr``/log call prints ``**********`` rather than the secret.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Protocol

from pydantic import SecretStr

from .declarations import ConfigValue, SecretRef
from .errors import SecretAccessDenied, SecretNotFound
from .settings import Settings
from .timeouts import call_with_timeout


class SecretProvider(Protocol):
    def resolve(self, ref: SecretRef) -> SecretStr:
        ...


class EnvProvider:
    """Reads values from the process environment (CI secret store injection)."""

    def __init__(self, prefix: str = "", environ: Mapping[str, str] | None = None):
        self.prefix = prefix
        self._environ = environ if environ is not None else os.environ

    def resolve(self, ref: SecretRef) -> SecretStr:
        name = f"{self.prefix}{ref.key}"
        raw = self._environ.get(name)
        if raw is None:
            raise SecretNotFound(f"{ref.describe()}: environment variable {name} is not set")
        return SecretStr(raw)


class FileProvider:
    """One value per file in a directory, the layout of a mounted secret volume."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def resolve(self, ref: SecretRef) -> SecretStr:
        path = (self.root / ref.key).resolve()
        if self.root.resolve() not in path.parents:
            raise SecretAccessDenied(f"{ref.describe()}: key escapes the secrets directory")
        try:
            return SecretStr(path.read_text(encoding="utf-8").rstrip("\n"))
        except FileNotFoundError:
            raise SecretNotFound(f"{ref.describe()}: no such file") from None
        except PermissionError:
            raise SecretAccessDenied(f"{ref.describe()}: permission denied") from None


class StaticProvider:
    """In-memory values; used for plain config maps and tests."""

    def __init__(self, values: Mapping[str, str]):
        self._values = dict(values)

    def resolve(self, ref: SecretRef) -> SecretStr:
        if ref.key not in self._values:
            raise SecretNotFound(f"{ref.describe()}: not found")
        return SecretStr(self._values[ref.key])


class ProviderRegistry:
    """Routes a reference to the provider named in ``ref.provider``."""

    def __init__(self, providers: Mapping[str, SecretProvider] | None = None):
        self._providers: dict[str, SecretProvider] = dict(providers or {})

    def register(self, name: str, provider: SecretProvider) -> None:
        self._providers[name] = provider

    def names(self) -> list[str]:
        return sorted(self._providers)

    def resolve(self, ref: SecretRef) -> SecretStr:
        provider = self._providers.get(ref.provider)
        if provider is None:
            raise SecretNotFound(f"{ref.describe()}: no provider named {ref.provider!r}")
        value = provider.resolve(ref)
        if ref.template is not None:
            return SecretStr(ref.template.replace("{value}", value.get_secret_value()))
        return value

    @classmethod
    def from_settings(cls, settings: Settings) -> "ProviderRegistry":
        reg = cls({"env": EnvProvider(prefix=settings.env_secret_prefix)})
        if settings.secrets_dir:
            reg.register("file", FileProvider(settings.secrets_dir))
        return reg


def resolve_config(
    config: Mapping[str, ConfigValue],
    provider: SecretProvider,
    timeout_s: float,
) -> dict[str, SecretStr | str]:
    """Materialise one declaration's config; literals pass through untouched."""
    out: dict[str, SecretStr | str] = {}
    for key, value in config.items():
        if isinstance(value, SecretRef):
            out[key] = call_with_timeout(f"resolve {value.describe()}", timeout_s, provider.resolve, value)
        else:
            out[key] = value
    return out
