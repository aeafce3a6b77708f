"""Utilities for turning seed data, model output and stored rows into one another."""

import logging
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional

from beacon.core.models import ScoreRecord

logger = logging.getLogger(__name__)

_WHITESPACE = re.compile(r"\s+")

# model output name -> stored column name
SCORE_FIELD_MAP = {
    "decoration": "decoration",
    "coffee": "coffee",
    "studySuitable": "study_suitable",
    "parking": "parking",
    "evidence": "evidence",
    "sources_used": "sources",
}


def derive_target_id(name: str, postal_code: Optional[str]) -> str:
    """Stable id from the business identity, e.g. ``octane_coffee_30318``."""
    slug = _WHITESPACE.sub("_", name.strip().lower())
    return f"{slug}_{postal_code or ''}"


def to_target_row(shop: Mapping[str, Any], city: Optional[str]) -> Dict[str, Any]:
    name = (shop.get("name") or "").strip()
    address = (shop.get("location") or shop.get("address") or "").strip()
    if not name or not address:
        raise ValueError("name and address are required for a target")
    postal_code = shop.get("zipCode") or shop.get("postal_code")
    postal_code = str(postal_code).strip() if postal_code is not None else None

    return {
        "target_id": derive_target_id(name, postal_code),
        "name": name,
        "address": address,
        "city": city,
        "postal_code": postal_code,
    }


def iter_target_rows(data: Mapping[str, Iterable[Mapping[str, Any]]]) -> List[Dict[str, Any]]:
    """Flatten ``{city: [shop, ...]}`` seed data, skipping invalid entries."""
    rows: List[Dict[str, Any]] = []
    for city, shops in data.items():
        for shop in shops or []:
            try:
                rows.append(to_target_row(shop, city))
            except ValueError as exc:
                logger.warning("Skipping seed entry in %s: %s", city, exc)
    return rows


def to_score_record(target_id: str, payload: Mapping[str, Any]) -> ScoreRecord:
    """Map a schema-valid model payload onto stored field names."""
    fields = {stored: payload[external] for external, stored in SCORE_FIELD_MAP.items()}
    fields["evidence"] = list(fields["evidence"])
    fields["sources"] = list(fields["sources"])
    return ScoreRecord(target_id=target_id, **fields)


def to_business_payload(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Shape a joined target/score row the way the map UI consumes it."""
    updated_at = row.get("updated_at")
    return {
        "type": "Coffee Shop",
        "place_id": row["target_id"],
        "name": row.get("name"),
        "location": row.get("address"),
        "city": row.get("city"),
        "zipCode": row.get("postal_code"),
        "ratings": {
            "decoration": row.get("decoration") or 0,
            "coffee": row.get("coffee") or 0,
            "studySuitable": row.get("study_suitable") or 0,
        },
        "parking": row.get("parking") or "unknown",
        "evidence": list(row.get("evidence") or []),
        "sources": list(row.get("sources") or []),
        "lastUpdated": updated_at.isoformat() if updated_at is not None else None,
    }
