"""
Client Portal Backend — Notion Query Construction & Result Shaping
===================================================================

What:  Pure functions that build Notion database-query bodies and reshape
       the returned page objects.
Why:   Every query body MUST carry the tenant filter; keeping construction in
       one place means no route can forget it.

Notion filter reference (API version 2022-06-28):
    {"property": "Client", "select": {"equals": "King Ed"}}
    {"and": [<filter>, <filter>]}
    {"property": "Net", "number": {"equals": 10}}
"""

import math
from typing import Any, Dict, List, Optional

from portal.config import settings

SORT_DIRECTIONS = {"ascending", "descending"}


def client_filter(client_name: str) -> Dict[str, Any]:
    return {
        "property": settings.client_property,
        "select": {"equals": client_name},
    }


def _to_number(value: Optional[str]) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    # JSON bodies cannot carry nan or inf
    return number if math.isfinite(number) else 0


def build_filter(property_name: str, condition: str, value: Optional[str] = None) -> Dict[str, Any]:
    """
    Translate a (property, condition, value) triple from the query string
    into a Notion property filter.

    `equals` guesses the property type from its name ("date" → date,
    "number"/"price" → number); everything else is treated as rich text.
    Unknown conditions fall back to `contains`.
    """
    notion_filter: Dict[str, Any] = {"property": property_name}
    lowered = property_name.lower()

    if condition == "equals":
        if "date" in lowered:
            notion_filter["date"] = {"equals": value}
        elif "number" in lowered or "price" in lowered:
            notion_filter["number"] = {"equals": _to_number(value)}
        else:
            notion_filter["rich_text"] = {"equals": value}
    elif condition == "contains":
        notion_filter["rich_text"] = {"contains": value}
    elif condition == "checkbox":
        notion_filter["checkbox"] = {"equals": True}
    elif condition == "not_checkbox":
        notion_filter["checkbox"] = {"equals": False}
    elif condition == "is_empty":
        notion_filter["rich_text"] = {"is_empty": True}
    elif condition == "is_not_empty":
        notion_filter["rich_text"] = {"is_not_empty": True}
    else:
        notion_filter["rich_text"] = {"contains": value}

    return notion_filter


def tenant_query(
    client_name: str,
    page_size: int,
    filter_property: Optional[str] = None,
    filter_condition: Optional[str] = None,
    filter_value: Optional[str] = None,
    sort_property: Optional[str] = None,
    sort_direction: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build a database-query body scoped to one client.

    An extra filter is AND-ed in only when both property and condition are
    given, and never on the tenant property itself (a caller cannot widen or
    replace the tenant filter).
    """
    body: Dict[str, Any] = {
        "page_size": page_size,
        "filter": client_filter(client_name),
    }

    if filter_property and filter_condition and filter_property != settings.client_property:
        body["filter"] = {
            "and": [
                body["filter"],
                build_filter(filter_property, filter_condition, filter_value),
            ]
        }

    if sort_property:
        direction = sort_direction if sort_direction in SORT_DIRECTIONS else "ascending"
        body["sorts"] = [{"property": sort_property, "direction": direction}]

    return body


def parse_columns(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    return [col.strip() for col in raw.split(",") if col.strip()]


def _select_name(record: Dict[str, Any], property_name: str) -> Optional[str]:
    prop = (record.get("properties") or {}).get(property_name) or {}
    select = prop.get("select") or {}
    return select.get("name")


def restrict_to_client(results: List[Dict[str, Any]], client_name: str) -> List[Dict[str, Any]]:
    """Drop any record whose tenant select is not exactly client_name."""
    return [r for r in results if _select_name(r, settings.client_property) == client_name]


def project_columns(results: List[Dict[str, Any]], columns: List[str]) -> List[Dict[str, Any]]:
    """Keep id, the tenant property and the requested properties of each record."""
    projected = []
    for record in results:
        properties = record.get("properties") or {}
        kept: Dict[str, Any] = {}
        if settings.client_property in properties:
            kept[settings.client_property] = properties[settings.client_property]
        for col in columns:
            if col in properties:
                kept[col] = properties[col]
        projected.append({"id": record.get("id"), "properties": kept})
    return projected


def collect_select_values(results: List[Dict[str, Any]], property_name: str) -> List[str]:
    """Distinct select option names for a property, in first-seen order."""
    seen: Dict[str, None] = {}
    for record in results:
        name = _select_name(record, property_name)
        if name:
            seen.setdefault(name, None)
    return list(seen)
