"""
Shared fixtures: collaborators that record every call.
"""

import logging
from typing import Dict, Iterable, List, Optional, Set, Tuple

import pytest

from backend.reqlang.environment import Environment, ModuleRecord, ModuleRegistry, ProbeService
from backend.reqlang.logging_utils import PACKAGE_LOGGER


class CountingRegistry(ModuleRegistry):
    """Module registry that records every query."""

    def __init__(
        self,
        modules: Optional[Dict[str, Optional[str]]] = None,
        features: Optional[Dict[str, Iterable[str]]] = None,
        failing: Iterable[str] = (),
    ):
        self.modules = dict(modules or {})
        self.features = {name: set(f) for name, f in (features or {}).items()}
        self.failing = set(failing)
        self.calls: List[Tuple[str, ...]] = []

    def lookup(self, name: str) -> Optional[ModuleRecord]:
        self.calls.append(("lookup", name))
        if name in self.failing:
            raise ConnectionError("registry unreachable")
        if name not in self.modules:
            return None
        return ModuleRecord(name=name, version=self.modules[name])

    def has_feature(self, name: str, feature: str) -> bool:
        self.calls.append(("has_feature", name, feature))
        return feature in self.features.get(name, set())

    def lookups(self, name: str) -> int:
        return self.calls.count(("lookup", name))


class CountingProbes(ProbeService):
    """Probe service that records every query."""

    def __init__(self, includes=(), libs=(), programs=()):
        self.found: Dict[str, Set[str]] = {
            "include": set(includes),
            "lib": set(libs),
            "program": set(programs),
        }
        self.calls: List[Tuple[str, str]] = []

    def _probe(self, kind: str, name: str) -> bool:
        self.calls.append((kind, name))
        return name in self.found[kind]

    def has_include(self, name: str) -> bool:
        return self._probe("include", name)

    def has_lib(self, name: str) -> bool:
        return self._probe("lib", name)

    def has_program(self, name: str) -> bool:
        return self._probe("program", name)


@pytest.fixture
def make_env():
    """Factory for environments backed by counting collaborators."""

    def factory(
        modules=None,
        features=None,
        failing=(),
        includes=(),
        libs=(),
        programs=(),
        osname="linux",
        ithreads=False,
    ) -> Environment:
        registry = CountingRegistry(modules, features, failing)
        probes = CountingProbes(includes, libs, programs)
        return Environment(registry=registry, probes=probes, osname=osname, ithreads=ithreads)

    return factory


@pytest.fixture
def package_logger():
    """The package logger, restored to its prior state afterwards."""
    logger = logging.getLogger(PACKAGE_LOGGER)
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield logger
    for handler in list(logger.handlers):
        if handler not in handlers:
            logger.removeHandler(handler)
            handler.close()
    logger.setLevel(level)
    logger.propagate = propagate
