"""Google Geocoding/Directions client used by the route-around-issue feature."""
from __future__ import annotations

import math
from typing import Any, Dict, List, Optional

import requests
from flask import current_app

from utils.errors import InvalidInput, UpstreamUnavailable

EARTH_RADIUS_METERS = 6_371_000


def haversine_meters(a: Dict[str, float], b: Dict[str, float]) -> float:
    lat1, lng1 = math.radians(a["lat"]), math.radians(a["lng"])
    lat2, lng2 = math.radians(b["lat"]), math.radians(b["lng"])
    dlat = lat2 - lat1
    dlng = lng2 - lng1
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(h))


def _api_key() -> str:
    key = current_app.config.get("GOOGLE_MAPS_API_KEY")
    if not key:
        raise UpstreamUnavailable("GOOGLE_MAPS_API_KEY is not configured")
    return key


def _get_json(url: str, params: Dict[str, Any], purpose: str) -> Dict[str, Any]:
    timeout = float(current_app.config.get("MAPS_TIMEOUT_SECONDS", 6))
    try:
        response = requests.get(url, params=params, timeout=timeout)
    except requests.RequestException as exc:
        current_app.logger.warning("Maps request failed", extra={"purpose": purpose, "error": str(exc)})
        raise UpstreamUnavailable("Maps service unreachable") from exc

    if response.status_code != 200:
        current_app.logger.warning(
            "Maps API non-200 response",
            extra={"purpose": purpose, "status": response.status_code, "body": (response.text or "")[:500]},
        )
        raise UpstreamUnavailable(f"Maps service returned HTTP {response.status_code}")
    try:
        body = response.json()
    except ValueError as exc:
        raise UpstreamUnavailable("Maps service returned non-JSON output") from exc
    if not isinstance(body, dict):
        raise UpstreamUnavailable("Maps service returned an unexpected payload")

    status = body.get("status")
    if status not in {"OK", "ZERO_RESULTS"}:
        current_app.logger.warning(
            "Maps API reported error",
            extra={"purpose": purpose, "status": status, "error_message": body.get("error_message")},
        )
        raise UpstreamUnavailable(f"Maps service status {status}")
    return body


def _coerce_point(value: Any, field: str) -> Dict[str, float]:
    if not isinstance(value, dict):
        raise InvalidInput(f"{field} must be an object with lat and lng", details={"field": field})
    try:
        lat = float(value["lat"])
        lng = float(value["lng"])
    except (KeyError, TypeError, ValueError):
        raise InvalidInput(f"{field} must be an object with lat and lng", details={"field": field})
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        raise InvalidInput(f"{field} is out of range", details={"field": field})
    return {"lat": lat, "lng": lng}


def geocode(address: Any) -> Optional[Dict[str, Any]]:
    """Resolve a free-text address; returns None when nothing matches."""
    if not isinstance(address, str) or not address.strip():
        raise InvalidInput("Address is required", details={"field": "address"})
    body = _get_json(
        current_app.config["GOOGLE_GEOCODE_URL"],
        {"address": address.strip(), "key": _api_key()},
        purpose="geocode",
    )
    results = body.get("results") or []
    if not results:
        return None
    try:
        location = results[0]["geometry"]["location"]
        return {
            "lat": float(location["lat"]),
            "lng": float(location["lng"]),
            "formatted_address": results[0].get("formatted_address") or address.strip(),
        }
    except (KeyError, TypeError, ValueError) as exc:
        raise UpstreamUnavailable("Geocoding result missing coordinates") from exc


def _waypoint(value: Any, field: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    point = _coerce_point(value, field)
    return f"{point['lat']},{point['lng']}"


def _route_summary(index: int, route: Dict[str, Any], avoid: Dict[str, float]) -> Dict[str, Any]:
    distance = 0
    duration = 0
    closest = math.inf
    for leg in route.get("legs") or []:
        distance += int((leg.get("distance") or {}).get("value") or 0)
        duration += int((leg.get("duration") or {}).get("value") or 0)
        for step in leg.get("steps") or []:
            for key in ("start_location", "end_location"):
                loc = step.get(key)
                if loc and "lat" in loc and "lng" in loc:
                    closest = min(closest, haversine_meters(avoid, {"lat": float(loc["lat"]), "lng": float(loc["lng"])}))
    return {
        "route_index": index,
        "summary": route.get("summary") or "",
        "distance_meters": distance,
        "duration_seconds": duration,
        "closest_approach_meters": None if closest == math.inf else round(closest, 1),
        "polyline": (route.get("overview_polyline") or {}).get("points"),
    }


def rank_routes(routes: List[Dict[str, Any]], avoid: Dict[str, float], radius_meters: float) -> List[Dict[str, Any]]:
    """Drop routes passing within ``radius_meters`` of ``avoid``; farthest first, then fastest."""
    summaries = [_route_summary(idx, route, avoid) for idx, route in enumerate(routes)]
    kept = [
        s for s in summaries
        if s["closest_approach_meters"] is None or s["closest_approach_meters"] >= radius_meters
    ]
    kept.sort(
        key=lambda s: (
            -(math.inf if s["closest_approach_meters"] is None else s["closest_approach_meters"]),
            s["duration_seconds"],
        )
    )
    return kept


def routes_avoiding(origin: Any, destination: Any, avoid: Any) -> List[Dict[str, Any]]:
    avoid_point = _coerce_point(avoid, "avoid")
    body = _get_json(
        current_app.config["GOOGLE_DIRECTIONS_URL"],
        {
            "origin": _waypoint(origin, "origin"),
            "destination": _waypoint(destination, "destination"),
            "alternatives": "true",
            "mode": "driving",
            "key": _api_key(),
        },
        purpose="directions",
    )
    radius = float(current_app.config.get("ROUTE_AVOID_RADIUS_METERS", 100))
    return rank_routes(body.get("routes") or [], avoid_point, radius)
