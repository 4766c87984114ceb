"""
Module import utilities.

This module provides explicit, deterministic import behavior:
- import_module_path(): Import using dotted module path (recommended)
- import_file_path(): Import from file path with explicit sys.path setup
- find_project_root(): Find pyproject.toml location for convenience

Registered type names are derived from module names, so a file imported by
path is given its dotted package name whenever one can be derived; the same
class then gets the same name on producer and consumer.
"""

from __future__ import annotations

import importlib
import importlib.util
import os
import sys
from typing import Any

from courier.core.logging import get_logger

logger = get_logger("imports")


def find_project_root(start_dir: str) -> str | None:
    """
    Check if start_dir itself contains pyproject.toml, setup.cfg, or setup.py.

    NOTE: Does NOT traverse up - only checks the given directory.
    """
    start_dir = os.path.abspath(start_dir)
    for marker in ("pyproject.toml", "setup.cfg", "setup.py"):
        if os.path.exists(os.path.join(start_dir, marker)):
            return start_dir
    return None


def setup_sys_path_from_cwd() -> str | None:
    """
    If cwd contains pyproject.toml (not parent dirs), add cwd to sys.path.

    Returns cwd if it was added to sys.path, None otherwise.
    """
    cwd = os.getcwd()
    if find_project_root(cwd) and cwd not in sys.path:
        sys.path.insert(0, cwd)
        logger.debug(f"Added cwd to sys.path: {cwd}")
        return cwd
    return None


def import_module_path(module_path: str) -> Any:
    """
    Import a module using its dotted path.

    Raises:
        ModuleNotFoundError: If the module cannot be found
    """
    return importlib.import_module(module_path)


def compute_package_path_from_fs(file_path: str) -> tuple[str | None, str | None]:
    """
    Walk up directory tree looking for __init__.py to determine package structure.

    Returns (dotted_module_name, package_root) if a package chain is found,
    otherwise (None, None).
    """
    file_path = os.path.realpath(file_path)
    module_name = os.path.splitext(os.path.basename(file_path))[0]
    current_dir = os.path.dirname(file_path)

    components = [module_name]
    while True:
        init_path = os.path.join(current_dir, "__init__.py")
        if not os.path.exists(init_path):
            break
        components.append(os.path.basename(current_dir))
        current_dir = os.path.dirname(current_dir)

    if len(components) == 1:
        return (None, None)

    components.reverse()
    return (".".join(components), current_dir)


def import_file_path(file_path: str, module_name: str | None = None) -> Any:
    """
    Import a module from a file path.

    1. Derive the dotted module name from the package chain (or the file's
       basename for a standalone file) unless module_name is given
    2. Add the package root (or the file's directory) to sys.path
    3. Import through the regular import system and return the module

    Raises:
        FileNotFoundError: If the file doesn't exist
        ImportError: If the module can't be loaded
    """
    file_path = os.path.realpath(file_path)

    if not os.path.exists(file_path):
        raise FileNotFoundError(f"Module file not found: {file_path}")

    # Check if already loaded
    for mod in list(sys.modules.values()):
        mod_file = getattr(mod, "__file__", None)
        if mod_file and os.path.realpath(mod_file) == file_path:
            return mod

    dotted_name, package_root = compute_package_path_from_fs(file_path)
    if dotted_name is None or package_root is None:
        dotted_name = os.path.splitext(os.path.basename(file_path))[0]
        package_root = os.path.dirname(file_path)

    if package_root not in sys.path:
        sys.path.insert(0, package_root)
        logger.debug(f"Added {package_root} to sys.path for {file_path}")

    if module_name is not None and module_name != dotted_name:
        spec = importlib.util.spec_from_file_location(module_name, file_path)
        if spec is None or spec.loader is None:
            raise ImportError(f"Could not load module from path: {file_path}")
        mod = importlib.util.module_from_spec(spec)
        sys.modules[module_name] = mod
        spec.loader.exec_module(mod)
        return mod

    return importlib.import_module(dotted_name)


def import_by_path(path: str, module_name: str | None = None) -> Any:
    """
    Import either a file path or a dotted module path.

    For file paths: delegates to import_file_path()
    For module paths: delegates to import_module_path()
    """
    if path.endswith(".py") or os.path.sep in path:
        return import_file_path(path, module_name)
    return import_module_path(path)
