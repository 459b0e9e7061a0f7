"""Import workflow code from extracted bundles.

Every load imports the bundle under a fresh package name, so a newly constructed
worker always gets the code currently on disk. Modules of a running worker are
never reloaded in place.
"""

from __future__ import annotations

import importlib
import importlib.machinery
import importlib.util
import logging
import re
import sys
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any

from temporal_generic_worker.deployment.bundle import ACTIVITIES_MODULE, WORKFLOW_MODULE
from temporal_generic_worker.errors import BundleError

logger = logging.getLogger(__name__)

# Attributes set by @workflow.defn / @activity.defn.
_WORKFLOW_DEFN_ATTR = "__temporal_workflow_definition"
_ACTIVITY_DEFN_ATTR = "__temporal_activity_definition"

PathResolver = Callable[[str], Path | None]


@dataclass(slots=True)
class LoadedBundles:
    workflows: list[type] = field(default_factory=list)
    activities: list[Callable[..., Any]] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


def _identifier(value: str) -> str:
    return re.sub(r"\W", "_", value)


def workflow_classes(module: ModuleType) -> dict[str, type]:
    """Map Temporal workflow name -> class for every `@workflow.defn` class in a module."""

    found: dict[str, type] = {}
    for value in vars(module).values():
        if not isinstance(value, type):
            continue
        defn = getattr(value, _WORKFLOW_DEFN_ATTR, None)
        name = getattr(defn, "name", None)
        if isinstance(name, str):
            found[name] = value
    return found


def activity_name(fn: Callable[..., Any]) -> str | None:
    defn = getattr(fn, _ACTIVITY_DEFN_ATTR, None)
    name = getattr(defn, "name", None)
    return name if isinstance(name, str) else None


def activity_functions(module: ModuleType) -> list[Callable[..., Any]]:
    return [
        value
        for value in vars(module).values()
        if callable(value) and getattr(value, _ACTIVITY_DEFN_ATTR, None) is not None
    ]


class BundleLoader:
    """Imports the bundles of a worker group, one workflow at a time.

    A bundle that fails to import is replaced by the last version of it that did
    load, or left out if none ever did; the rest of the group is unaffected.
    """

    def __init__(self, resolve_path: PathResolver) -> None:
        self._resolve_path = resolve_path
        self._packages: dict[str, str] = {}
        self._last_good: dict[str, tuple[type, list[Callable[..., Any]]]] = {}

    def load(self, names: Iterable[str]) -> LoadedBundles:
        """Load every named bundle.

        Raises:
            BundleError: if none of the names could be loaded.
        """

        names = list(names)
        loaded = LoadedBundles()
        for name in names:
            try:
                workflow_cls, activities = self.load_one(name)
            except Exception:
                loaded.failed.append(name)
                previous = self._last_good.get(name)
                if previous is None:
                    logger.exception("Skipping workflow bundle", extra={"workflow": name})
                    continue
                logger.exception(
                    "Keeping previously loaded workflow bundle", extra={"workflow": name}
                )
                workflow_cls, activities = previous
            loaded.workflows.append(workflow_cls)
            loaded.activities.extend(activities)

        if names and not loaded.workflows:
            raise BundleError(f"No workflow bundle could be loaded ({', '.join(names)})")
        return loaded

    def load_one(self, name: str) -> tuple[type, list[Callable[..., Any]]]:
        path = self._resolve_path(name)
        if path is None:
            raise BundleError(f"No local bundle for workflow {name}")

        package = self._import_package(name, path)
        try:
            workflow_cls, activities = self._import_bundle(name, path, package)
        except BaseException:
            self._forget(package)
            raise

        previous = self._packages.get(name)
        if previous is not None:
            self._forget(previous)
        self._packages[name] = package
        self._last_good[name] = (workflow_cls, activities)

        logger.debug(
            "Loaded workflow bundle",
            extra={"workflow": name, "package": package, "activities": len(activities)},
        )
        return workflow_cls, activities

    @staticmethod
    def _import_bundle(
        name: str, path: Path, package: str
    ) -> tuple[type, list[Callable[..., Any]]]:
        workflow_module = importlib.import_module(f"{package}.{Path(WORKFLOW_MODULE).stem}")
        classes = workflow_classes(workflow_module)
        if name not in classes:
            raise BundleError(
                f"{path / WORKFLOW_MODULE} defines no @workflow.defn named {name!r} "
                f"(found: {sorted(classes)})"
            )

        activities = activity_functions(workflow_module)
        if (path / ACTIVITIES_MODULE).is_file():
            activities_module = importlib.import_module(
                f"{package}.{Path(ACTIVITIES_MODULE).stem}"
            )
            activities.extend(activity_functions(activities_module))
        return classes[name], activities

    @staticmethod
    def _import_package(name: str, path: Path) -> str:
        package = f"tgw_bundle_{_identifier(name)}_{uuid.uuid4().hex[:8]}"
        spec = importlib.machinery.ModuleSpec(package, None, is_package=True)
        spec.submodule_search_locations = [str(path)]
        sys.modules[package] = importlib.util.module_from_spec(spec)
        return package

    @staticmethod
    def _forget(package: str) -> None:
        for module_name in [m for m in sys.modules if m == package or m.startswith(f"{package}.")]:
            del sys.modules[module_name]
