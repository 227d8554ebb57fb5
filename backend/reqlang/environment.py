"""
Environment collaborators.

The evaluator asks two collaborators about the live system: a module
registry (installed packages, their versions and features) and a probe
service (system includes, libraries and programs). This module defines
their interfaces, in-memory implementations, host probes, and a YAML
loader for static environment descriptions.
"""

from __future__ import annotations

import ctypes.util
import os
import shutil
import sys
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ReqLangError


@dataclass(frozen=True)
class ModuleRecord:
    """An installed module; `version` is None when it declares none."""
    name: str
    version: Optional[str] = None


class ModuleRegistry(ABC):
    """Answers questions about installed modules."""

    @abstractmethod
    def lookup(self, name: str) -> Optional[ModuleRecord]:
        """Return the installed module, or None when it is absent."""

    @abstractmethod
    def has_feature(self, name: str, feature: str) -> bool:
        """Whether an installed module exposes a feature."""


class ProbeService(ABC):
    """Answers questions about the host system."""

    @abstractmethod
    def has_include(self, name: str) -> bool:
        ...

    @abstractmethod
    def has_lib(self, name: str) -> bool:
        ...

    @abstractmethod
    def has_program(self, name: str) -> bool:
        ...


class StaticModuleRegistry(ModuleRegistry):
    """
    In-memory module registry.

    Usage:
        registry = StaticModuleRegistry({"File::Spec": "0.90"})
        registry.add("Module::Build", "0.42", features=["yaml_support"])
    """

    def __init__(self, modules: Optional[Dict[str, Optional[str]]] = None):
        self._modules: Dict[str, ModuleRecord] = {}
        self._features: Dict[str, FrozenSet[str]] = {}
        for name, version in (modules or {}).items():
            self.add(name, version)

    def add(self, name: str, version: Optional[str] = None, features: Iterable[str] = ()) -> None:
        """Add or replace a module."""
        self._modules[name] = ModuleRecord(name=name, version=version)
        self._features[name] = frozenset(features)

    def remove(self, name: str) -> bool:
        """Remove a module. Returns True if removed."""
        if name in self._modules:
            del self._modules[name]
            self._features.pop(name, None)
            return True
        return False

    def lookup(self, name: str) -> Optional[ModuleRecord]:
        return self._modules.get(name)

    def has_feature(self, name: str, feature: str) -> bool:
        return feature in self._features.get(name, frozenset())

    def list_modules(self) -> List[ModuleRecord]:
        return list(self._modules.values())


class StaticProbes(ProbeService):
    """In-memory probe answers."""

    def __init__(
        self,
        includes: Iterable[str] = (),
        libs: Iterable[str] = (),
        programs: Iterable[str] = (),
    ):
        self.includes = set(includes)
        self.libs = set(libs)
        self.programs = set(programs)

    def has_include(self, name: str) -> bool:
        return name in self.includes

    def has_lib(self, name: str) -> bool:
        return name in self.libs

    def has_program(self, name: str) -> bool:
        return name in self.programs


DEFAULT_INCLUDE_DIRS = ("/usr/include", "/usr/local/include")


class HostProbes(ProbeService):
    """
    Probes the running machine.

    Programs are found on PATH, libraries through the platform linker
    search, includes by looking through a list of include directories
    (the defaults plus CPATH and C_INCLUDE_PATH).
    """

    def __init__(self, include_dirs: Optional[Iterable[Union[str, Path]]] = None):
        if include_dirs is None:
            dirs: List[str] = list(DEFAULT_INCLUDE_DIRS)
            for var in ("CPATH", "C_INCLUDE_PATH"):
                dirs.extend(p for p in os.environ.get(var, "").split(os.pathsep) if p)
            include_dirs = dirs
        self.include_dirs = [Path(d) for d in include_dirs]

    def has_include(self, name: str) -> bool:
        return any((d / name).is_file() for d in self.include_dirs)

    def has_lib(self, name: str) -> bool:
        lib = name[3:] if name.startswith("lib") else name
        return ctypes.util.find_library(lib) is not None

    def has_program(self, name: str) -> bool:
        return shutil.which(name) is not None


def default_osname() -> str:
    """Operating system name in the style of `{OSNAME}` values."""
    if sys.platform.startswith("win"):
        return "MSWin32"
    if sys.platform.startswith("linux"):
        return "linux"
    return sys.platform


@dataclass(frozen=True)
class Environment:
    """
    Everything an evaluation may consult.

    Attributes:
        registry: Module registry collaborator.
        probes: Probe collaborator.
        osname: Value of `{OSNAME}`.
        ithreads: Value of `{ITHREADS}`.
    """

    registry: ModuleRegistry
    probes: ProbeService = field(default_factory=StaticProbes)
    osname: str = field(default_factory=default_osname)
    ithreads: bool = False


def _version_text(value: Any) -> Any:
    # YAML reads `0.90` as the float 0.9, which is a different version
    if isinstance(value, float):
        raise ValueError(f"version {value!r} must be quoted")
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


class ModuleSpec(BaseModel):
    """One module entry of an environment file."""

    model_config = ConfigDict(extra="forbid")

    version: Optional[str] = Field(default=None, description="Declared version")
    features: List[str] = Field(default_factory=list)

    @field_validator("version", mode="before")
    @classmethod
    def _coerce_version(cls, value: Any) -> Any:
        return _version_text(value)


class EnvironmentSpec(BaseModel):
    """Schema of a YAML environment description."""

    model_config = ConfigDict(extra="forbid")

    osname: str = Field(default_factory=default_osname)
    ithreads: bool = False
    modules: Dict[str, Optional[ModuleSpec]] = Field(default_factory=dict)
    includes: List[str] = Field(default_factory=list)
    libs: List[str] = Field(default_factory=list)
    programs: List[str] = Field(default_factory=list)

    @field_validator("modules", mode="before")
    @classmethod
    def _expand_shorthand(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        expanded = {}
        for name, entry in value.items():
            if entry is None:
                expanded[name] = {}
            elif isinstance(entry, (str, int, float)) and not isinstance(entry, bool):
                expanded[name] = {"version": _version_text(entry)}
            else:
                expanded[name] = entry
        return expanded

    def build(self) -> Environment:
        registry = StaticModuleRegistry()
        for name, spec in self.modules.items():
            spec = spec or ModuleSpec()
            registry.add(name, spec.version, features=spec.features)
        probes = StaticProbes(includes=self.includes, libs=self.libs, programs=self.programs)
        return Environment(registry=registry, probes=probes, osname=self.osname, ithreads=self.ithreads)


def load_environment(source: Union[str, Path]) -> Environment:
    """
    Build an Environment from a YAML description.

    Args:
        source: Path to a YAML file, or YAML text.

    Returns:
        An Environment backed by static collaborators.

    Raises:
        ReqLangError: On malformed YAML or an invalid description.
    """
    if isinstance(source, Path):
        text = source.read_text(encoding="utf-8")
    else:
        text = source

    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise ReqLangError(f"Malformed environment YAML: {e}") from e

    if not isinstance(data, dict):
        raise ReqLangError("Environment YAML must be a mapping")

    try:
        spec = EnvironmentSpec.model_validate(data)
    except ValidationError as e:
        raise ReqLangError(f"Invalid environment description: {e}") from e
    return spec.build()
