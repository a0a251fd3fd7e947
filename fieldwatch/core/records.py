"""
Raw feed records <-> typed entities. Parsing never raises: anything missing
or malformed falls back to the documented default.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from ..schemas.feed import (
    Alert,
    GeoPoint,
    NetworkConnection,
    NetworkStatus,
    Node,
    NodeRole,
    NodeStatus,
    Severity,
    default_alert_flags,
)

logger = logging.getLogger(__name__)

FALLBACK_LOCATION = GeoPoint(lat=21.15, lng=79.08)
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_TRAILING_DIGITS = re.compile(r"(\d+)$")


def entries(raw: Any) -> list[tuple[str, Any]]:
    """(key, value) pairs of a collection that arrived as a dict or a sparse list."""
    if isinstance(raw, dict):
        return [(str(k), v) for k, v in raw.items() if v is not None]
    if isinstance(raw, list):
        return [(str(i), v) for i, v in enumerate(raw) if v is not None]
    return []


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return None if math.isnan(number) or math.isinf(number) else number


def percent(value: Any, default: int = 100) -> int:
    number = _number(value)
    if number is None:
        return default
    return int(round(min(max(number, 0.0), 100.0)))


def count(value: Any) -> int:
    number = _number(value)
    return max(int(number), 0) if number is not None else 0


def truthy(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    if isinstance(value, (int, float)):
        return value == 1
    return value is True


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 strings or epoch milliseconds; naive values are taken as UTC."""
    parsed: Optional[datetime] = None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        number = _number(value)
        if number is not None:
            try:
                parsed = datetime.fromtimestamp(number / 1000, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                return None
    if parsed is not None and parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_location(value: Any) -> GeoPoint:
    if isinstance(value, dict):
        lat, lng = _number(value.get("lat")), _number(value.get("lng"))
        if lat is not None and lng is not None and -90 <= lat <= 90 and -180 <= lng <= 180:
            return GeoPoint(lat=lat, lng=lng)
    return FALLBACK_LOCATION.model_copy()


def parse_alert_flags(value: Any) -> dict[str, bool]:
    flags = default_alert_flags()
    if isinstance(value, dict):
        for kind, active in value.items():
            flags[str(kind)] = truthy(active)
    return flags


def _enum(enum_cls, value: Any, default):
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    return default


def parse_node(node_id: str, raw: Any) -> Node:
    data = raw if isinstance(raw, dict) else {}
    suffix = node_id[4:] if node_id.startswith("node") else node_id
    name = data.get("name")
    sector = data.get("sector")
    return Node(
        id=node_id,
        name=name if isinstance(name, str) and name else f"Node #{suffix}",
        sector=sector if isinstance(sector, str) and sector else "Unknown Sector",
        status=_enum(NodeStatus, data.get("status"), NodeStatus.ONLINE),
        battery=percent(data.get("battery")),
        signal_strength=percent(data.get("signalStrength")),
        last_activity=parse_timestamp(data.get("lastActivity")),
        location=parse_location(data.get("location")),
        role=_enum(NodeRole, data.get("type", data.get("role")), NodeRole.STANDARD),
        alerts=parse_alert_flags(data.get("alerts")),
    )


def parse_nodes(raw: Any) -> list[Node]:
    nodes = [parse_node(node_id, data) for node_id, data in entries(raw)]
    nodes.sort(key=lambda n: n.id)
    return nodes


def parse_alert(alert_id: str, raw: Any) -> Alert:
    data = raw if isinstance(raw, dict) else {}
    kind = data.get("type")
    kind = kind if isinstance(kind, str) and kind else "unknown"
    node_id = data.get("nodeId")
    description = data.get("description")
    return Alert(
        id=alert_id,
        kind=kind,
        node_id=str(node_id) if node_id is not None else "",
        timestamp=parse_timestamp(data.get("timestamp")) or EPOCH,
        description=description if isinstance(description, str) and description else f"{kind} detected",
        severity=_enum(Severity, data.get("severity"), Severity.INFO),
        acknowledged=truthy(data.get("acknowledged")),
    )


def sort_alerts(alerts: Iterable[Alert]) -> list[Alert]:
    """Newest first; equal timestamps fall back to id so the order is total."""
    return sorted(alerts, key=lambda a: (a.timestamp, a.id), reverse=True)


def parse_alerts(raw: Any) -> list[Alert]:
    return sort_alerts(parse_alert(alert_id, data) for alert_id, data in entries(raw))


def parse_connection(raw: Any) -> Optional[NetworkConnection]:
    if not isinstance(raw, dict):
        return None
    source, target = raw.get("source"), raw.get("target")
    if not source or not target:
        return None
    return NetworkConnection(source=str(source), target=str(target), strength=percent(raw.get("strength"), 0))


def parse_connections(raw: Any) -> list[NetworkConnection]:
    parsed = (parse_connection(data) for _, data in entries(raw))
    return [c for c in parsed if c is not None]


def dedupe_connections(connections: Iterable[NetworkConnection]) -> list[NetworkConnection]:
    """One link per unordered node pair, keeping the strongest reading."""
    best: dict[frozenset[str], NetworkConnection] = {}
    for conn in connections:
        current = best.get(conn.pair)
        if current is None or conn.strength > current.strength:
            best[conn.pair] = conn
    return list(best.values())


def parse_network_status(raw: Any) -> NetworkStatus:
    data = raw if isinstance(raw, dict) else {}
    return NetworkStatus(active_nodes=count(data.get("activeNodes")), total_nodes=count(data.get("totalNodes")))


def next_node_id(existing_ids: Iterable[str]) -> str:
    numbers = [int(m.group(1)) for m in (_TRAILING_DIGITS.search(i) for i in existing_ids) if m]
    return f"node{max(numbers) + 1 if numbers else 1}"


# ── outbound ──

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat().replace("+00:00", "Z") if value else None


def node_to_record(node: Node) -> dict[str, Any]:
    return {
        "name": node.name,
        "sector": node.sector,
        "status": node.status.value,
        "battery": node.battery,
        "signalStrength": node.signal_strength,
        "lastActivity": _iso(node.last_activity),
        "location": {"lat": node.location.lat, "lng": node.location.lng},
        "type": node.role.value,
        "alerts": dict(node.alerts),
    }


def alert_to_record(alert: Alert) -> dict[str, Any]:
    return {
        "type": alert.kind,
        "nodeId": alert.node_id,
        "timestamp": _iso(alert.timestamp),
        "description": alert.description,
        "severity": alert.severity.value,
        "acknowledged": alert.acknowledged,
    }


def connection_to_record(conn: NetworkConnection) -> dict[str, Any]:
    return {"source": conn.source, "target": conn.target, "strength": conn.strength}


def network_status_to_record(status: NetworkStatus) -> dict[str, Any]:
    return {"activeNodes": status.active_nodes, "totalNodes": status.total_nodes}
