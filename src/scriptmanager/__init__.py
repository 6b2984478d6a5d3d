"""
This file provides:

- Path settings for global config file & relative directories
- Version numbering
- Re-exports of the main entry points
"""

__version__ = "1.0.0"

import os
from pathlib import Path

package_dir = Path(__file__).resolve().parent

from scriptmanager.capture import CaptureItem
from scriptmanager.config import ScriptManagerConfig, Strings, load_config
from scriptmanager.engine import ScriptEngine
from scriptmanager.exceptions import (
    CodecMismatch,
    MoveIncompleteError,
    NotFoundError,
    ScriptManagerError,
    TransportFailure,
)
from scriptmanager.imports import Import, ImportType
from scriptmanager.services import EditRequest, InMemoryEditService, ServiceRegistry, WikiEditService
from scriptmanager.utils.log import logger

if os.getenv("SCRIPTMANAGER_SILENT_STARTUP", "").lower() not in ("1", "true"):
    logger.debug(f"scriptmanager {__version__} loaded from {package_dir}")

__all__ = [
    "CaptureItem",
    "CodecMismatch",
    "EditRequest",
    "Import",
    "ImportType",
    "InMemoryEditService",
    "MoveIncompleteError",
    "NotFoundError",
    "ScriptEngine",
    "ScriptManagerConfig",
    "ScriptManagerError",
    "ServiceRegistry",
    "Strings",
    "TransportFailure",
    "WikiEditService",
    "load_config",
    "package_dir",
]
