"""Resolve a motion-control selector (e.g. ``DOLLY_IN``) to an element UUID.

Elements advertised by the upstream account are preferred; the configured
``motion_control_elements`` table is the fallback. No UUIDs are built in.
"""

import logging
import re
from typing import Any, Dict, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)


def normalize_selector(name: str) -> str:
    return re.sub(r"[^A-Z0-9]", "_", name.upper())


def _element_uuid(element: Mapping[str, Any]) -> Optional[str]:
    for key in ("akUUID", "id", "uuid"):
        value = element.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def resolve_motion_control(
    selector: str,
    elements: Iterable[Mapping[str, Any]] = (),
    table: Optional[Dict[str, str]] = None,
) -> Optional[str]:
    """Return the element UUID for ``selector`` or None when it is unknown."""
    wanted = normalize_selector(selector)
    compact = wanted.replace("_", "")

    for element in elements:
        name = normalize_selector(str(element.get("name") or element.get("title") or ""))
        if not name:
            continue
        if name == wanted or compact in name.replace("_", ""):
            uuid = _element_uuid(element)
            if uuid:
                return uuid

    for key, uuid in (table or {}).items():
        if normalize_selector(key) == wanted:
            return uuid

    logger.warning(f"No motion control element configured for {wanted}")
    return None
