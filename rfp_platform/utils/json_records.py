"""Versioned JSON records stored in Text columns.

Every blob written by the platform is a tagged record::

    {"schema_version": 2, ...payload...}

Readers pass the current version and an ``upgraders`` map of
``{from_version: callable(dict) -> dict}``; each upgrader lifts a record
exactly one version.  Rows written before tagging existed carry no
``schema_version`` and are read as version 0.

Usage
-----
    from rfp_platform.utils.json_records import dump_record, load_record

    rfp.timeline_config_json = dump_record(config, TIMELINE_CONFIG_VERSION)
    config = load_record(rfp.timeline_config_json,
                         current_version=TIMELINE_CONFIG_VERSION,
                         upgraders=_CONFIG_UPGRADERS)
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)

VERSION_KEY = "schema_version"


def dump_record(payload: dict | None, version: int) -> str:
    """Serialise *payload* with its schema version tag."""
    record = dict(payload or {})
    record[VERSION_KEY] = version
    return json.dumps(record, default=str, sort_keys=True)


def load_record(
    raw: str | dict | None,
    *,
    current_version: int,
    upgraders: dict[int, Callable[[dict], dict]] | None = None,
    default: dict | None = None,
) -> dict:
    """Parse and upgrade a stored record to *current_version*.

    Unparseable or non-object payloads yield a copy of *default* (``{}``).
    Records newer than *current_version* are returned as-is.
    """
    if raw is None or raw == "":
        return dict(default or {})
    if isinstance(raw, dict):
        record = dict(raw)
    else:
        try:
            record = json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning("Discarding unparseable JSON record: %.80r", raw)
            return dict(default or {})
    if not isinstance(record, dict):
        return dict(default or {})

    version = record.get(VERSION_KEY, 0)
    if not isinstance(version, int):
        version = 0
    upgraders = upgraders or {}
    while version < current_version:
        step = upgraders.get(version)
        if step is not None:
            record = step(record)
        version += 1
        record[VERSION_KEY] = version
    return record


def strip_version(record: dict) -> dict[str, Any]:
    """Return *record* without the version tag (for API responses)."""
    return {k: v for k, v in record.items() if k != VERSION_KEY}
