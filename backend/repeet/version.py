"""
Version management for the Repeet backend
Reads version from root version.json file
"""
import json
import os
from pathlib import Path

from .logging_config import get_logger

logger = get_logger("repeet.version")


def get_version():
    """Read version from version.json at project root"""
    # backend/repeet/version.py -> backend/ -> root/
    version_file = Path(__file__).parent.parent.parent / "version.json"
    try:
        if version_file.exists():
            data = json.loads(version_file.read_text(encoding="utf-8"))
            return data.get("version") or data.get("backend") or "1.0.0"
    except (OSError, ValueError) as exc:
        logger.warning("Could not read version.json", path=str(version_file), error=str(exc))

    return os.getenv("APP_VERSION", "1.0.0")


APP_VERSION = get_version()
