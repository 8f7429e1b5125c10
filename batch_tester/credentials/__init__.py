"""Credential ABC with __init_subclass__ auto-registration.

Each credential kind lives in its own module and registers itself by
defining ``kind``. ``Credential.from_dict`` dispatches on the JSON ``type``
tag, so adding a kind needs no changes outside its module.
"""

from __future__ import annotations

import importlib
import pkgutil
from abc import ABC, abstractmethod
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar, Optional

import httpx

from batch_tester.errors import AuthError, ConfigError

if TYPE_CHECKING:
    from batch_tester.auth import AuthProvider


class Credential(ABC):
    """Base class for all credential kinds.

    Subclasses are frozen dataclasses. Secrets are excluded from repr.
    """

    _registry: ClassVar[dict[str, type["Credential"]]] = {}

    kind: ClassVar[str]
    required_fields: ClassVar[tuple[str, ...]] = ()

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        if getattr(cls, "kind", None):
            Credential._registry[cls.kind] = cls

    @classmethod
    def get_registry(cls) -> dict[str, type["Credential"]]:
        return dict(cls._registry)

    @classmethod
    def from_dict(cls, data: Any) -> "Credential":
        discover_credentials()
        if not isinstance(data, dict):
            raise ConfigError(f"auth must be an object, got {type(data).__name__}")
        kind = data.get("type")
        if kind not in cls._registry:
            raise ConfigError(f"Unknown auth type: {kind!r}. Available: {sorted(cls._registry)}")
        return cls._registry[kind].parse(data)

    @classmethod
    @abstractmethod
    def parse(cls, data: dict) -> "Credential":
        """Build an instance from its JSON shape (type tag already checked)."""
        ...

    @abstractmethod
    def to_dict(self) -> dict:
        ...

    def missing_fields(self) -> list[str]:
        return [name for name in self.required_fields if not getattr(self, name)]

    def check_fields(self) -> None:
        missing = self.missing_fields()
        if missing:
            raise AuthError(f"{self.kind}: missing required field(s): {', '.join(missing)}")

    async def resolve(self, auth: "AuthProvider", client: httpx.AsyncClient) -> dict[str, str]:
        """Full resolution: field check, then the kind-specific header build."""
        self.check_fields()
        return await self.headers(auth, client)

    @abstractmethod
    async def headers(self, auth: "AuthProvider", client: httpx.AsyncClient) -> dict[str, str]:
        ...


def merge_headers(base: dict[str, str], override: dict[str, str]) -> dict[str, str]:
    """Case-insensitive merge; names from ``override`` replace those in ``base``."""
    merged = dict(base)
    for name, value in override.items():
        for existing in [k for k in merged if k.lower() == name.lower()]:
            del merged[existing]
        merged[name] = value
    return merged


def _opt_str(data: dict, key: str) -> Optional[str]:
    value = data.get(key)
    return str(value) if value is not None else None


def discover_credentials() -> None:
    """Import all credential modules in this package to trigger registration."""
    package_dir = Path(__file__).parent
    for info in pkgutil.iter_modules([str(package_dir)]):
        if info.name.startswith("_"):
            continue
        importlib.import_module(f"batch_tester.credentials.{info.name}")
