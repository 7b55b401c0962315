"""
Plugin registry, loader and invoker.

A plugin is a Python source file exposing a class with a no-argument
constructor and a ``process_and_upload`` method::

    PLUGIN_NAME = "WaferFlat"
    __version__ = "1.2.0"

    class WaferFlatUploader:
        def process_and_upload(self, file_path, config_path):
            ...

The method may take ``(file_path, config_path)`` or just ``(file_path)``;
the two-argument form is preferred. Each load imports the module under a
new name; the file on disk is never held open and can be replaced or
deleted while the agent runs.
"""

from __future__ import annotations

import hashlib
import importlib.util
import inspect
import itertools
import json
import shutil
import sys
import threading
import types
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable

from loguru import logger

from app.models.schemas import PluginDescriptor
from app.utils.helpers import file_signature, is_within, normalise_path

ENTRY_METHOD = "process_and_upload"

_load_counter = itertools.count()


@runtime_checkable
class Processor(Protocol):
    """Contract a plugin class must satisfy."""

    def process_and_upload(self, file_path: str, config_path: str) -> Any:
        ...


class PluginError(Exception):
    """Raised for plugin registry misuse and unresolvable modules."""


class PluginNotFoundError(PluginError):
    """No plugin is registered under the requested name."""


@dataclass(slots=True)
class DispatchResult:
    """Outcome of one plugin invocation."""

    ok: bool
    plugin: str
    file_path: Path
    error: Optional[str] = None


@dataclass(slots=True)
class _ResolvedEntry:
    signature: Tuple[int, int]
    module: types.ModuleType
    processor_type: type
    arity: Optional[int] = None


def load_module_from_path(path: Path) -> types.ModuleType:
    """
    Import a plugin source file as a fresh, uniquely named module.

    importlib reads the source into memory and closes the file before
    executing it, so the module on disk is never held open.

    Args:
        path: Plugin source file

    Returns:
        Freshly executed module object (not left in sys.modules)
    """
    path = normalise_path(Path(path))
    digest = hashlib.sha1(str(path).encode()).hexdigest()[:12]
    module_name = f"ingest_plugin_{path.stem}_{digest}_{next(_load_counter)}"

    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot create module spec for {path}")

    module = importlib.util.module_from_spec(spec)

    # Registered only while executing, for dataclasses and friends
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    finally:
        sys.modules.pop(module_name, None)

    return module


def find_processor_type(module: types.ModuleType) -> Optional[type]:
    """First concrete class defined in module that satisfies Processor."""
    for value in list(vars(module).values()):
        if not inspect.isclass(value):
            continue
        if value.__module__ != module.__name__ or inspect.isabstract(value):
            continue
        if issubclass(value, Processor) and callable(getattr(value, ENTRY_METHOD)):
            return value
    return None


def _root_cause(exc: BaseException) -> BaseException:
    while exc.__cause__ is not None:
        exc = exc.__cause__
    return exc


def _describe(exc: BaseException) -> str:
    root = _root_cause(exc)
    return f"{type(root).__name__}: {root}"


class PluginInvoker:
    """Load plugin modules, cache their entry point, and call it safely."""

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize invoker.

        Args:
            config_path: Passed as the second argument to two-argument entries
        """
        self.config_path = config_path
        self._cache: Dict[Path, _ResolvedEntry] = {}
        self._lock = threading.Lock()

    def resolve(self, module_path: Path) -> _ResolvedEntry:
        """
        Return the cached entry for module_path, reloading it if the file changed.

        Raises:
            PluginError: If the module is missing, fails to load, or has no processor type
        """
        module_path = normalise_path(Path(module_path))
        signature = file_signature(module_path)
        if signature is None:
            raise PluginError(f"Plugin module not found: {module_path}")

        with self._lock:
            cached = self._cache.get(module_path)
            if cached is not None and cached.signature == signature:
                return cached

        try:
            module = load_module_from_path(module_path)
        except Exception as e:
            raise PluginError(f"Failed to load {module_path.name}: {_describe(e)}") from e

        processor_type = find_processor_type(module)
        if processor_type is None:
            raise PluginError(f"No type with {ENTRY_METHOD}() in {module_path.name}")

        entry = _ResolvedEntry(signature=signature, module=module, processor_type=processor_type)
        with self._lock:
            self._cache[module_path] = entry

        logger.debug(f"[PluginInvoker] Resolved {processor_type.__name__} from {module_path.name}")
        return entry

    def _arity(self, method) -> Optional[int]:
        try:
            signature = inspect.signature(method)
        except (TypeError, ValueError):
            return None

        for args in (("file", "config"), ("file",)):
            try:
                signature.bind(*args)
            except TypeError:
                continue
            return len(args)

        return None

    def invoke(self, module_path: Path, file_path: Path, plugin_name: Optional[str] = None) -> DispatchResult:
        """
        Run a plugin's entry method on one file. Never raises.

        Args:
            module_path: Plugin source file
            file_path: Data file to process
            plugin_name: Name used in the result and log lines

        Returns:
            DispatchResult with ok flag and error text
        """
        plugin_name = plugin_name or Path(module_path).stem
        file_path = Path(file_path)

        try:
            entry = self.resolve(module_path)
            instance = entry.processor_type()
            method = getattr(instance, ENTRY_METHOD)

            if entry.arity is None:
                entry.arity = self._arity(method)
            if entry.arity is None:
                raise PluginError(f"No callable {ENTRY_METHOD}() form in {plugin_name}")

            if entry.arity == 2:
                args = (str(file_path), str(self.config_path) if self.config_path else "")
            else:
                args = (str(file_path),)

            logger.info(f"[PluginInvoker] Plugin run started > {plugin_name}")
            method(*args)

        except Exception as e:
            error = _describe(e)
            logger.error(f"[PluginInvoker] Plugin run failed > {plugin_name}: {error}")
            return DispatchResult(ok=False, plugin=plugin_name, file_path=file_path, error=error)

        logger.info(f"[PluginInvoker] Plugin run finished > {plugin_name}")
        return DispatchResult(ok=True, plugin=plugin_name, file_path=file_path)

    def evict(self, module_path: Path) -> None:
        """Drop the cached entry for module_path."""
        with self._lock:
            self._cache.pop(normalise_path(Path(module_path)), None)


class PluginRegistry:
    """
    Named plugin modules.

    Two kinds of entry are kept apart: modules registered into the library
    folder, persisted as JSON, and modules mapped in place from
    configuration. A mapped entry shadows a library entry of the same name.
    """

    def __init__(self, library_dir: Path, registry_file: Path, drop_folder: Optional[Path] = None):
        """
        Initialize registry.

        Args:
            library_dir: Folder registered modules are copied into
            registry_file: JSON file listing registered modules
            drop_folder: When set, modules are only registered from inside it
        """
        self.library_dir = Path(library_dir).expanduser()
        self.registry_file = Path(registry_file).expanduser()
        self.drop_folder = Path(drop_folder).expanduser() if drop_folder is not None else None
        self._library: Dict[str, PluginDescriptor] = {}
        self._mapped: Dict[str, PluginDescriptor] = {}
        self._lock = threading.RLock()

    def _entries(self) -> Dict[str, PluginDescriptor]:
        return {**self._library, **self._mapped}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries())

    def list(self) -> List[PluginDescriptor]:
        with self._lock:
            return sorted(self._entries().values(), key=lambda p: p.name.lower())

    def get(self, name: str) -> Optional[PluginDescriptor]:
        """Case-insensitive lookup, configured mappings first."""
        key = name.lower()
        with self._lock:
            return self._mapped.get(key) or self._library.get(key)

    def add(self, name: str, path: Path, version: Optional[str] = None) -> PluginDescriptor:
        """Map a module in place, without copying or persisting it."""
        descriptor = PluginDescriptor(name=name, version=version, path=Path(path).expanduser())
        with self._lock:
            self._mapped[name.lower()] = descriptor
        logger.debug(f"[PluginRegistry] Plugin mapped: {descriptor} -> {descriptor.path}")
        return descriptor

    def load(self) -> List[PluginDescriptor]:
        """
        Restore registered plugins from the registry file.

        Entries whose module file is missing are logged and skipped.

        Returns:
            Descriptors that were restored
        """
        if not self.registry_file.exists():
            return []

        try:
            entries = json.loads(self.registry_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error(f"[PluginRegistry] Could not read {self.registry_file}: {e}")
            return []

        restored: List[PluginDescriptor] = []
        for entry in entries:
            try:
                name = entry["name"]
                path = Path(entry["path"])
            except (KeyError, TypeError):
                logger.warning(f"[PluginRegistry] Malformed registry entry skipped: {entry!r}")
                continue

            if not path.is_absolute():
                path = self.library_dir / path

            if not path.exists():
                logger.error(f"[PluginRegistry] Plugin module not found: {path}")
                continue

            descriptor = PluginDescriptor(name=name, version=entry.get("version"), path=path)
            with self._lock:
                self._library[name.lower()] = descriptor
            restored.append(descriptor)
            logger.info(f"[PluginRegistry] Plugin auto-loaded: {descriptor}")

        return restored

    def register(self, source: Path) -> PluginDescriptor:
        """
        Validate a module, copy it into the library and persist the entry.

        Args:
            source: Plugin source file

        Returns:
            The new descriptor

        Raises:
            PluginError: If the module is outside the drop folder, invalid or already registered
        """
        source = Path(source).expanduser()
        if self.drop_folder is not None and not is_within(source, [self.drop_folder]):
            raise PluginError(f"Plugins can only be registered from {self.drop_folder}: {source}")

        if not source.is_file():
            raise PluginError(f"Plugin file not found: {source}")

        try:
            module = load_module_from_path(source)
        except Exception as e:
            raise PluginError(f"Plugin load error: {_describe(e)}") from e

        if find_processor_type(module) is None:
            raise PluginError(f"No type with {ENTRY_METHOD}() in {source.name}")

        name = str(getattr(module, "PLUGIN_NAME", None) or source.stem)
        version = getattr(module, "__version__", None)
        version = str(version) if version is not None else None

        with self._lock:
            if name.lower() in self._entries():
                raise PluginError(f"Plugin already registered: {name}")

            destination = self.library_dir / source.name
            if destination.exists():
                raise PluginError(f"A module with the same file name already exists: {destination.name}")

            self.library_dir.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, destination)

            descriptor = PluginDescriptor(name=name, version=version, path=destination)
            self._library[name.lower()] = descriptor
            self._save()

        logger.info(f"[PluginRegistry] Plugin registered: {descriptor}")
        return descriptor

    def remove(self, name: str) -> PluginDescriptor:
        """
        Unregister a plugin.

        A library entry's copy is deleted and the registry file rewritten.
        Configured mappings are only forgotten; their modules stay on disk.

        Returns:
            The descriptor that was in effect

        Raises:
            PluginNotFoundError: If no plugin has that name
            PluginError: If the library copy cannot be deleted
        """
        key = name.lower()
        with self._lock:
            mapped = self._mapped.get(key)
            registered = self._library.get(key)
            if mapped is None and registered is None:
                raise PluginNotFoundError(f"Plugin not registered: {name}")

            if registered is not None:
                self._delete_library_copy(registered)
                del self._library[key]
                self._save()
            self._mapped.pop(key, None)

        descriptor = mapped or registered
        logger.info(f"[PluginRegistry] Plugin removed: {descriptor.name}")
        return descriptor

    def _delete_library_copy(self, descriptor: PluginDescriptor) -> None:
        path = descriptor.path
        if not is_within(path, [self.library_dir]):
            logger.warning(f"[PluginRegistry] Module outside the library kept on disk: {path}")
            return
        if not path.exists():
            return

        try:
            path.unlink()
        except OSError as e:
            raise PluginError(f"Could not delete {path}: {e}") from e
        logger.info(f"[PluginRegistry] Module file deleted: {path}")

    def _save(self) -> None:
        entries = []
        for key in sorted(self._library):
            descriptor = self._library[key]
            try:
                stored = descriptor.path.relative_to(self.library_dir)
            except ValueError:
                stored = descriptor.path
            entries.append({
                "name": descriptor.name,
                "version": descriptor.version,
                "path": str(stored),
            })

        tmp_path = self.registry_file.with_name(self.registry_file.name + ".tmp")
        tmp_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(json.dumps(entries, indent=2, sort_keys=True), encoding="utf-8")
        tmp_path.replace(self.registry_file)
