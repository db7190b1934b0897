"""Loading and basic validation of extension manifests."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

from extrunner.errors import InvalidManifest

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.json"


def get_validated_manifest(source_dir: Union[str, Path]) -> dict[str, Any]:
    """
    Read the manifest.json of an extension source directory.

    Only the properties this tool relies on are checked, not everything
    a browser would require.

    Args:
        source_dir: Extension source directory

    Returns:
        The parsed manifest

    Raises:
        InvalidManifest: If the manifest can't be read, parsed or lacks a
            required property
    """
    manifest_file = Path(source_dir) / MANIFEST_FILE
    logger.debug(f"Validating manifest at {manifest_file}")

    try:
        # utf-8-sig strips a leading BOM
        contents = manifest_file.read_text(encoding="utf-8-sig")
    except OSError as e:
        raise InvalidManifest(f"Could not read manifest.json file at {manifest_file}: {e}")

    try:
        manifest_data = json.loads(contents)
    except json.JSONDecodeError as e:
        raise InvalidManifest(f"Error parsing manifest.json file at {manifest_file}: {e}")

    if not isinstance(manifest_data, dict):
        raise InvalidManifest(f"Manifest at {manifest_file} is not a JSON object")

    errors = []
    if not manifest_data.get("name"):
        errors.append('missing "name" property')
    if not manifest_data.get("version"):
        errors.append('missing "version" property')
    if "applications" in manifest_data and not (manifest_data["applications"] or {}).get("gecko"):
        errors.append('missing "applications.gecko" property')

    if errors:
        raise InvalidManifest(f"Manifest at {manifest_file} is invalid: {'; '.join(errors)}")

    return manifest_data


def get_manifest_id(manifest_data: dict[str, Any]) -> Optional[str]:
    """Get the gecko id of an extension, if declared.

    ``browser_specific_settings`` wins over ``applications`` when both
    declare gecko settings, even without an id.
    """
    for key in ("browser_specific_settings", "applications"):
        apps = manifest_data.get(key) or {}
        gecko = apps.get("gecko")
        if gecko:
            return gecko.get("id")
    return None
