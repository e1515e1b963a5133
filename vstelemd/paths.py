"""
Path resolution interfaces for editor storage locations.

The core components never branch on the operating system themselves; they
ask a PathResolver for every location they need.
"""

import os
import platform
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, List, Optional

from .errors import AccessError


class PathResolver(ABC):
    """Abstract interface for OS-specific editor paths."""

    @abstractmethod
    def get_storage_path(self) -> str:
        """Get the path of the global storage.json file."""
        pass

    @abstractmethod
    def get_db_path(self) -> str:
        """Get the path of the global state.vscdb database."""
        pass

    @abstractmethod
    def get_machine_id_path(self) -> str:
        """Get the path of the machineid file."""
        pass

    @abstractmethod
    def get_workspace_storage_path(self) -> str:
        """Get the workspaceStorage directory."""
        pass

    @abstractmethod
    def get_extensions_path(self) -> str:
        """Get the directory where extensions are installed."""
        pass

    @abstractmethod
    def get_home_dir(self) -> str:
        """Get the current user's home directory."""
        pass

    @abstractmethod
    def get_app_data_dir(self) -> str:
        """Get the per-user application data directory."""
        pass

    @abstractmethod
    def get_os(self) -> str:
        """Get the operating system name: windows, darwin or linux."""
        pass

    def get_global_storage_path(self) -> str:
        """Get the globalStorage directory that holds storage.json."""
        return str(Path(self.get_storage_path()).parent)

    def get_user_dir(self) -> str:
        """Get the editor's User directory."""
        return str(Path(self.get_workspace_storage_path()).parent)

    def get_cache_directories(self) -> List[str]:
        """Get extension cache directories for this platform."""
        home = Path(self.get_home_dir())
        system = self.get_os()
        if system == "windows":
            local_app_data = Path(os.environ.get("LOCALAPPDATA", home / "AppData" / "Local"))
            return [
                str(local_app_data / "Microsoft" / "vscode-cpptools"),
                str(local_app_data / "Microsoft" / "vscode-eslint"),
                str(local_app_data / "Microsoft" / "vscode-typescript"),
                str(local_app_data / "vscode-extensions-cache"),
            ]
        if system == "darwin":
            return [
                str(home / "Library" / "Caches" / "com.microsoft.VSCode"),
                str(home / "Library" / "Caches" / "vscode-extensions"),
                "/tmp/vscode-extensions",
            ]
        xdg_cache = Path(os.environ.get("XDG_CACHE_HOME", home / ".cache"))
        return [
            str(xdg_cache / "vscode-extensions"),
            "/tmp/vscode-extensions",
            str(home / ".vscode-server" / "data" / "logs"),
        ]

    def get_temp_directories(self) -> List[str]:
        """Get temporary directories that may hold extension files."""
        home = Path(self.get_home_dir())
        directories = [tempfile.gettempdir()]
        system = self.get_os()
        if system == "windows":
            directories.append(str(home / "AppData" / "Local" / "Temp"))
        elif system == "darwin":
            directories.append(str(home / "Library" / "Caches" / "TemporaryItems"))
        else:
            directories.extend(["/var/tmp", str(home / ".tmp")])
        return directories


class SystemPathResolver(PathResolver):
    """Resolves editor paths for the running machine."""

    def __init__(self, editor_name: str = "Code", overrides: Optional[Dict[str, str]] = None):
        self.editor_name = editor_name
        self.overrides = {k: v for k, v in (overrides or {}).items() if v}

    def get_os(self) -> str:
        system = platform.system().lower()
        if system.startswith("win"):
            return "windows"
        if system == "darwin":
            return "darwin"
        return "linux"

    def get_home_dir(self) -> str:
        try:
            return str(Path.home())
        except RuntimeError as e:
            raise AccessError(f"Cannot determine home directory: {e}")

    def get_app_data_dir(self) -> str:
        home = Path(self.get_home_dir())
        system = self.get_os()
        if system == "windows":
            return os.environ.get("APPDATA", str(home / "AppData" / "Roaming"))
        if system == "darwin":
            return str(home / "Library" / "Application Support")
        return str(home / ".local" / "share")

    def _editor_root(self) -> Path:
        home = Path(self.get_home_dir())
        system = self.get_os()
        if system == "windows":
            return Path(os.environ.get("APPDATA", str(home / "AppData" / "Roaming"))) / self.editor_name
        if system == "darwin":
            return home / "Library" / "Application Support" / self.editor_name
        return home / ".config" / self.editor_name

    def get_storage_path(self) -> str:
        if "storage_path" in self.overrides:
            return self.overrides["storage_path"]
        return str(self._editor_root() / "User" / "globalStorage" / "storage.json")

    def get_db_path(self) -> str:
        if "db_path" in self.overrides:
            return self.overrides["db_path"]
        return str(self._editor_root() / "User" / "globalStorage" / "state.vscdb")

    def get_machine_id_path(self) -> str:
        if "machine_id_path" in self.overrides:
            return self.overrides["machine_id_path"]
        if self.get_os() == "darwin":
            return str(self._editor_root() / "machineid")
        return str(self._editor_root() / "User" / "machineid")

    def get_workspace_storage_path(self) -> str:
        if "workspace_storage_path" in self.overrides:
            return self.overrides["workspace_storage_path"]
        return str(self._editor_root() / "User" / "workspaceStorage")

    def get_extensions_path(self) -> str:
        if "extensions_path" in self.overrides:
            return self.overrides["extensions_path"]
        return str(Path(self.get_home_dir()) / ".vscode" / "extensions")


class StaticPathResolver(PathResolver):
    """
    Resolver backed by an explicit mapping.

    Useful when scanning a copied profile or a test fixture. Keys are the
    method names without the ``get_`` prefix (``storage_path``, ``db_path``,
    ``machine_id_path``, ``workspace_storage_path``, ``extensions_path``,
    ``home_dir``, ``app_data_dir``, ``os``). Cache and temp directories can be
    given as lists under ``cache_directories`` and ``temp_directories``.
    """

    def __init__(self, paths: Dict[str, object]):
        self.paths = dict(paths)

    def _get(self, name: str) -> str:
        value = self.paths.get(name)
        if not value:
            raise AccessError(f"Path not configured: {name}")
        return str(value)

    def get_storage_path(self) -> str:
        return self._get("storage_path")

    def get_db_path(self) -> str:
        return self._get("db_path")

    def get_machine_id_path(self) -> str:
        return self._get("machine_id_path")

    def get_workspace_storage_path(self) -> str:
        return self._get("workspace_storage_path")

    def get_extensions_path(self) -> str:
        return self._get("extensions_path")

    def get_home_dir(self) -> str:
        return self._get("home_dir")

    def get_app_data_dir(self) -> str:
        return self._get("app_data_dir")

    def get_os(self) -> str:
        return str(self.paths.get("os", "linux"))

    def get_cache_directories(self) -> List[str]:
        return [str(p) for p in self.paths.get("cache_directories", [])]

    def get_temp_directories(self) -> List[str]:
        return [str(p) for p in self.paths.get("temp_directories", [])]


def create_path_resolver(editor_name: str = "Code", overrides: Optional[Dict[str, str]] = None) -> PathResolver:
    """Create a resolver for the running machine."""
    return SystemPathResolver(editor_name, overrides)
