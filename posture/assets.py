"""
posture/assets.py -- Asset inventory CRUD, attack-surface statistics and topology.

Assets carry no scoring logic. connections is a list of other asset ids
owned by the same user; topology() turns it into a {nodes, links} graph
payload for a client-side renderer.
"""

import logging
from typing import Any, Optional

from core.errors import NotFoundError
from core.models import ASSET_STATUSES, ASSET_TYPES, EXPOSURE_LEVELS, SEVERITIES, Asset
from posture.fields import (
    check_choice,
    check_text,
    coerce_number,
    raise_if,
    reject_cleared,
    require,
)
from posture.store import PostureStore

logger = logging.getLogger("threatmap.posture.assets")

_MUTABLE_FIELDS = (
    "name",
    "type",
    "description",
    "ip_address",
    "hostname",
    "os",
    "location",
    "criticality",
    "is_public_facing",
    "ports_open",
    "services",
    "status",
    "exposure_level",
    "position_x",
    "position_y",
    "connections",
    "tags",
    "owner",
    "notes",
)

_LIST_FIELDS = ("ports_open", "services", "connections", "tags")


def _parse_ports(value: Any, errors: list) -> list[int]:
    ports: list[int] = []
    for item in value or []:
        try:
            port = int(item)
        except (TypeError, ValueError):
            errors.append({"field": "ports_open", "message": "Ports must be integers between 0 and 65535"})
            return []
        if not 0 <= port <= 65535:
            errors.append({"field": "ports_open", "message": "Ports must be integers between 0 and 65535"})
            return []
        ports.append(port)
    return ports


def _parse(fields: dict, errors: list) -> dict:
    parsed: dict = {}
    for name in _MUTABLE_FIELDS:
        if name not in fields:
            continue
        value = fields[name]
        if name == "name":
            value = check_text(value, errors, "name", max_length=200, required=True)
        elif name == "type":
            value = check_choice(value, ASSET_TYPES, errors, "type")
        elif name == "criticality":
            value = check_choice(value, SEVERITIES, errors, "criticality")
        elif name == "status":
            value = check_choice(value, ASSET_STATUSES, errors, "status")
        elif name == "exposure_level":
            value = check_choice(value, EXPOSURE_LEVELS, errors, "exposure_level")
        elif name in ("position_x", "position_y"):
            value = coerce_number(value, errors, name, float("-inf"), float("inf"))
        elif name == "is_public_facing":
            value = bool(value)
        elif name == "ports_open":
            value = _parse_ports(value, errors)
        elif name in _LIST_FIELDS:
            value = [str(v) for v in (value or [])]
        parsed[name] = value
    return parsed


def create_asset(store: PostureStore, user_id: int, fields: dict) -> Asset:
    errors: list = []
    require(fields, ("name", "type"), errors)
    values = _parse(fields, errors)
    raise_if(errors)
    for name, default in (("criticality", "medium"), ("status", "active"), ("exposure_level", "internal")):
        if values.get(name) is None:
            values[name] = default
    asset = store.create("asset", {"user_id": user_id, **values})
    logger.info("Asset created: %s (%s) by user %s", asset.id, asset.type, user_id)
    return asset


def update_asset(store: PostureStore, user_id: int, asset_id: str, patch: dict) -> Asset:
    """Partial update: only the keys present in patch change."""
    asset = store.find_one("asset", asset_id, user_id=user_id)
    if asset is None:
        raise NotFoundError("asset", asset_id)

    errors: list = []
    reject_cleared(patch, ("name", "type", "criticality", "status", "exposure_level"), errors)
    parsed = _parse(patch, errors)
    raise_if(errors)

    if not parsed:
        return asset
    updated = store.update("asset", asset_id, parsed)
    if updated is None:
        raise NotFoundError("asset", asset_id)
    logger.info("Asset updated: %s fields=%s", asset_id, sorted(parsed))
    return updated


def move_asset(store: PostureStore, user_id: int, asset_id: str, position_x: Any, position_y: Any) -> Asset:
    """Store new topology coordinates for one asset (drag-and-drop in the graph view)."""
    return update_asset(store, user_id, asset_id, {"position_x": position_x, "position_y": position_y})


def delete_asset(store: PostureStore, user_id: int, asset_id: str) -> None:
    if store.find_one("asset", asset_id, user_id=user_id) is None:
        raise NotFoundError("asset", asset_id)
    store.delete("asset", asset_id)
    logger.info("Asset deleted: %s", asset_id)


def get_asset(store: PostureStore, user_id: int, asset_id: str) -> Asset:
    asset = store.find_one("asset", asset_id, user_id=user_id)
    if asset is None:
        raise NotFoundError("asset", asset_id)
    return asset


def list_assets(
    store: PostureStore,
    user_id: int,
    type: Optional[str] = None,
    criticality: Optional[str] = None,
    exposure_level: Optional[str] = None,
    status: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Asset], int]:
    filters = {
        k: v
        for k, v in (
            ("type", type),
            ("criticality", criticality),
            ("exposure_level", exposure_level),
            ("status", status),
        )
        if v
    }
    items = store.find(
        "asset",
        user_id=user_id,
        order_by="created_at",
        descending=True,
        limit=limit,
        offset=offset,
        search=search,
        **filters,
    )
    return items, store.count("asset", user_id=user_id, search=search, **filters)


def asset_statistics(store: PostureStore, user_id: int) -> dict:
    """Attack-surface summary: totals, public-facing count, and per-attribute breakdowns."""
    assets = store.find("asset", user_id=user_id)
    by_type: dict[str, int] = {}
    by_criticality: dict[str, int] = {}
    by_exposure: dict[str, int] = {}
    for asset in assets:
        by_type[asset.type] = by_type.get(asset.type, 0) + 1
        by_criticality[asset.criticality] = by_criticality.get(asset.criticality, 0) + 1
        by_exposure[asset.exposure_level] = by_exposure.get(asset.exposure_level, 0) + 1
    return {
        "total": len(assets),
        "public_facing": sum(1 for a in assets if a.is_public_facing),
        "by_type": by_type,
        "by_criticality": by_criticality,
        "by_exposure": by_exposure,
    }


def topology(store: PostureStore, user_id: int) -> dict:
    """Build the {nodes, links} graph for a user's assets.

    Links to ids that are not among the user's assets are dropped, as are
    self-links. An undirected pair is emitted once even when both ends list
    each other.
    """
    assets = store.find("asset", user_id=user_id)
    nodes = [
        {
            "id": a.id,
            "name": a.name,
            "type": a.type,
            "criticality": a.criticality,
            "exposure_level": a.exposure_level,
            "is_public_facing": a.is_public_facing,
            "status": a.status,
            "ip_address": a.ip_address,
            "x": a.position_x,
            "y": a.position_y,
        }
        for a in assets
    ]
    known = {a.id for a in assets}
    seen: set[frozenset] = set()
    links = []
    for asset in assets:
        for target in asset.connections:
            pair = frozenset((asset.id, target))
            if target not in known or target == asset.id or pair in seen:
                continue
            seen.add(pair)
            links.append({"source": asset.id, "target": target})
    return {"nodes": nodes, "links": links}
