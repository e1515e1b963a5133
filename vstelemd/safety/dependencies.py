"""
Extension dependency checks.

Reads the package.json of every installed extension to find which other
extensions would be affected when one extension's data is removed: declared
extensionDependencies, references in contributed configuration or commands,
and extensions that look like they share telemetry or analytics data.
"""

import json
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import structlog

from ..errors import AccessError, ParseError
from ..paths import PathResolver
from ..patterns import tables
from ..scanners.base import list_directories, load_json_file

logger = structlog.get_logger(__name__)

DEPENDENCY_EXTENSION = "extension"
DEPENDENCY_CONFIGURATION = "configuration"
DEPENDENCY_SHARED_DATA = "shared_data"


@dataclass
class ExtensionInfo:
    """An installed extension as described by its manifest."""
    extension_id: str
    name: str
    publisher: str
    version: str = ""
    install_path: str = ""
    dependencies: List[str] = field(default_factory=list)
    extension_dependencies: List[str] = field(default_factory=list)
    manifest: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DependencyInfo:
    """One extension that depends on, or shares data with, another."""
    dependent_extension: str
    dependency_type: str
    required: bool
    description: str
    impact: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'dependent_extension': self.dependent_extension,
            'dependency_type': self.dependency_type,
            'required': self.required,
            'description': self.description,
            'impact': self.impact,
        }


def parse_manifest(manifest: Dict[str, Any], install_path: str = "") -> Optional[ExtensionInfo]:
    """ExtensionInfo from a package.json document, or None without publisher and name."""
    publisher = manifest.get("publisher")
    name = manifest.get("name")
    if not isinstance(publisher, str) or not isinstance(name, str) or not publisher or not name:
        return None
    dependencies = manifest.get("dependencies")
    extension_dependencies = manifest.get("extensionDependencies")
    return ExtensionInfo(
        extension_id=f"{publisher}.{name}",
        name=name,
        publisher=publisher,
        version=str(manifest.get("version") or ""),
        install_path=install_path,
        dependencies=sorted(dependencies) if isinstance(dependencies, dict) else [],
        extension_dependencies=[d for d in extension_dependencies if isinstance(d, str)]
        if isinstance(extension_dependencies, list) else [],
        manifest=manifest,
    )


def has_configuration_reference(info: ExtensionInfo, extension_id: str) -> bool:
    contributes = info.manifest.get("contributes")
    if not isinstance(contributes, dict):
        return False
    target = extension_id.lower()
    for section in ("configuration", "commands"):
        value = contributes.get(section)
        if value and target in json.dumps(value, default=str).lower():
            return True
    return False


class DependencyChecker:
    """Finds installed extensions affected by removing another extension's data."""

    def __init__(self, resolver: PathResolver):
        self.resolver = resolver
        self._registry: Optional[Dict[str, ExtensionInfo]] = None
        self._lock = threading.Lock()

    def load_registry(self) -> Dict[str, ExtensionInfo]:
        """
        Installed extensions keyed by lowercase id, loaded once.

        An unconfigured or missing extensions directory means no extensions.
        Raises AccessError when the directory exists but cannot be listed.
        Manifests that cannot be read or parsed are skipped.
        """
        with self._lock:
            if self._registry is not None:
                return self._registry

            registry: Dict[str, ExtensionInfo] = {}
            try:
                extensions_path = self.resolver.get_extensions_path()
            except AccessError:
                logger.debug("Extensions path not configured")
                extensions_path = None

            if extensions_path:
                for directory in list_directories(extensions_path):
                    install_path = os.path.join(extensions_path, directory)
                    manifest_path = os.path.join(install_path, "package.json")
                    if not os.path.isfile(manifest_path):
                        continue
                    try:
                        manifest = load_json_file(manifest_path)
                    except (OSError, ParseError) as e:
                        logger.warning("Skipping unreadable extension manifest", path=manifest_path, error=str(e))
                        continue
                    info = parse_manifest(manifest, install_path) if isinstance(manifest, dict) else None
                    if info is not None:
                        registry[info.extension_id.lower()] = info

            logger.info("Extension registry loaded", extensions=len(registry))
            self._registry = registry
            return registry

    def reload(self):
        with self._lock:
            self._registry = None

    def get_extension_info(self, extension_id: str) -> Optional[ExtensionInfo]:
        return self.load_registry().get(extension_id.lower())

    def dependency_graph(self) -> Dict[str, List[str]]:
        """Dependency id -> ids of the extensions that declare it."""
        graph: Dict[str, List[str]] = {}
        for info in self.load_registry().values():
            for dependency in info.extension_dependencies:
                graph.setdefault(dependency.lower(), []).append(info.extension_id)
        return graph

    def check_dependencies(self, extension_id: str) -> List[DependencyInfo]:
        """Everything that may break or change when extension_id's data is removed."""
        target = extension_id.lower()
        found = []
        for key, info in sorted(self.load_registry().items()):
            if key == target:
                continue
            if any(dependency.lower() == target for dependency in info.extension_dependencies):
                found.append(DependencyInfo(
                    dependent_extension=info.extension_id,
                    dependency_type=DEPENDENCY_EXTENSION,
                    required=True,
                    description=f"{info.name} depends on {extension_id}",
                    impact="Extension may not function properly without this dependency",
                ))
            if has_configuration_reference(info, extension_id):
                found.append(DependencyInfo(
                    dependent_extension=info.extension_id,
                    dependency_type=DEPENDENCY_CONFIGURATION,
                    required=False,
                    description=f"{info.name} has configuration references to {extension_id}",
                    impact="Some configuration settings may be affected",
                ))
            for keyword, data_description in tables.SHARED_DATA_KEYWORDS:
                if keyword in key:
                    found.append(DependencyInfo(
                        dependent_extension=info.extension_id,
                        dependency_type=DEPENDENCY_SHARED_DATA,
                        required=False,
                        description=f"Shares {data_description} with {extension_id}",
                        impact="Shared data may be affected if removed",
                    ))

        if found:
            logger.info("Extension dependencies found", extension_id=extension_id, count=len(found))
        return found

    def removal_warnings(self, extension_id: str) -> List[str]:
        """Human-readable warnings for every dependency of extension_id."""
        warnings = []
        for dependency in self.check_dependencies(extension_id):
            prefix = "Required by" if dependency.required else "May affect"
            warnings.append(f"{prefix} {dependency.dependent_extension}: {dependency.description}")
        return warnings


def create_dependency_checker(resolver: PathResolver) -> DependencyChecker:
    return DependencyChecker(resolver)
