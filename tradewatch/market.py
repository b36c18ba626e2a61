# tradewatch/market.py
"""Client for the marketplace search API.

The provider is a tRPC endpoint: the query travels as a URL-encoded JSON batch
in the ``input`` parameter, and the listings come back nested under
``[0].result.data.json.data``. The client never retries; a failed search
surfaces as `ProviderError` and the next trigger tries again.
"""
import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import requests
from .errors import ProviderError
from .schemas import QueryFilter
from .utils import logger

PRICE_RANGE = {"min": 0, "max": 9999999999}
LEVEL_REQUIRED = [0, 100]
SORT_ORDER = {"updatedAt": -1, "createdAt": -1}


@dataclass(frozen=True)
class Item:
    id: str
    seller: Optional[str]
    price: Optional[float]
    updated_at: Optional[datetime]
    created_at: Optional[datetime] = None
    attributes: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


def parse_timestamp(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000.0).astimezone()
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _effect(affix, index, meta):
    effect = {"id": affix.id}
    value = {}
    for bound in ("min", "max"):
        v = getattr(affix, bound)
        if v is None:
            meta[f"effectsGroup.0.effects.{index}.value.{bound}"] = ["undefined"]
        else:
            value[bound] = v
    if value:
        effect["value"] = value
    return effect


def build_payload(query: QueryFilter, cursor: int = 1) -> Dict[str, Any]:
    meta = {}
    effects = [_effect(a, i, meta) for i, a in enumerate(query.affixes)]
    meta["effectsGroup.0.value"] = ["undefined"]
    return {
        "0": {
            "json": {
                "mode": list(query.mode),
                "itemType": list(query.item_type),
                "class": list(query.classes),
                "sockets": [],
                "category": [],
                "price": dict(PRICE_RANGE),
                "powerLevel": [query.power_level_min, query.power_level_max],
                "levelRequired": list(LEVEL_REQUIRED),
                "sort": dict(SORT_ORDER),
                "sold": False,
                "exactPrice": False,
                "cursor": cursor,
                "limit": query.limit,
                "effectsGroup": [{
                    "type": "and",
                    "effects": effects,
                    "value": None,
                    "effectType": "affixes",
                }],
            },
            "meta": {"values": meta},
        }
    }


def parse_item(raw) -> Item:
    if not isinstance(raw, dict) or not raw.get("_id"):
        raise ProviderError("Listing without an _id in provider response")
    user = raw.get("userId")
    seller = user.get("name") if isinstance(user, dict) else None
    price = raw.get("price")
    try:
        price = float(price) if price is not None else None
    except (TypeError, ValueError):
        price = None
    return Item(
        id=str(raw["_id"]),
        seller=seller,
        price=price,
        updated_at=parse_timestamp(raw.get("updatedAt")),
        created_at=parse_timestamp(raw.get("createdAt")),
        attributes=raw,
    )


def extract_items(body) -> List[Item]:
    try:
        rows = body[0]["result"]["data"]["json"]["data"]
    except (KeyError, IndexError, TypeError):
        raise ProviderError("Unexpected provider response shape")
    if not isinstance(rows, list):
        raise ProviderError("Provider listing payload is not a list")
    return [parse_item(r) for r in rows]


class MarketQueryClient:
    def __init__(self, api_url, timeout=30.0, session=None):
        self.api_url = api_url
        self.timeout = timeout
        self.session = session or requests

    def search(self, query: QueryFilter) -> List[Item]:
        params = {"batch": 1, "input": json.dumps(build_payload(query), separators=(",", ":"))}
        try:
            resp = self.session.get(self.api_url, params=params, timeout=self.timeout)
        except requests.RequestException as e:
            raise ProviderError(f"Provider request failed: {e}")
        if not 200 <= resp.status_code < 300:
            raise ProviderError(f"Provider returned HTTP {resp.status_code}", status=resp.status_code)
        try:
            body = resp.json()
        except ValueError:
            raise ProviderError("Provider returned non-JSON body", status=resp.status_code)
        items = extract_items(body)
        logger.info("Provider returned %d listings for itemType=%s", len(items), query.item_type)
        return items
