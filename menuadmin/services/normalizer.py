"""
Upstream store records → canonical {venue, categories[items]} shape.

The provider has emitted three layouts over time:

  item_lists       ``item_list_<key>`` blocks, each ``{name, items, sort_order}``
  menu_categories  ``menuCategories: [{name, items}]``
  flat             ``menu: [item, ...]`` with per-item ``category`` strings

Shape detection happens once per record; everything downstream only ever
sees ``CategoryGroup`` / ``NormalizedItem``.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Literal, Optional

from menuadmin.exceptions import NormalizationError

ITEM_LIST_PREFIX = "item_list_"
DEFAULT_CATEGORY = "Uncategorized"
PROMO_MARKER = "!"

# fields that never reach normalized storage; they stay in the raw archive
DROPPED_FIELDS = ("reviews",)

Shape = Literal["item_lists", "menu_categories", "flat", "empty"]

_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?")
_SEPARATOR_RE = re.compile(r"[_\-]+")


@dataclass
class NormalizedItem:
    name: str
    description: Optional[str]
    price_cents: Optional[int]
    image_url: Optional[str]
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CategoryGroup:
    name: str
    items: List[NormalizedItem] = field(default_factory=list)


@dataclass
class VenueInfo:
    name: str
    external_id: Optional[str] = None
    address1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    phone: Optional[str] = None


# ── Field helpers ─────────────────────────────────────────────────────────────

def strip_reviews(store: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in store.items() if k not in DROPPED_FIELDS}


def display_category_name(raw: str) -> str:
    """``"most_popular"`` → ``"Most Popular"``. Only first letters are touched."""
    words = _SEPARATOR_RE.sub(" ", raw).split()
    if not words:
        return DEFAULT_CATEGORY
    return " ".join(w[:1].upper() + w[1:] for w in words)


def _to_cents(amount: Decimal) -> Optional[int]:
    if not amount.is_finite():
        return None
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_price_cents(price: Any) -> Optional[int]:
    """
    Normalize any upstream price to integer minor units.

    Accepts ``{"amount": 12.99, "display": "$12.99"}``, a bare number in major
    units, or a string such as ``"$1,299.00"``. Anything unparseable is
    ``None``, never zero.
    """
    if price is None or isinstance(price, bool):
        return None

    if isinstance(price, dict):
        amount = price.get("amount")
        if amount is not None and not isinstance(amount, bool):
            cents = parse_price_cents(amount)
            if cents is not None:
                return cents
        display = price.get("display")
        return parse_price_cents(display) if isinstance(display, str) else None

    if isinstance(price, (int, float)):
        if isinstance(price, float) and not math.isfinite(price):
            return None
        return _to_cents(Decimal(str(price)))

    if isinstance(price, str):
        cleaned = re.sub(r"[\s,]", "", price)
        match = _NUMBER_RE.search(cleaned)
        if not match:
            return None
        try:
            return _to_cents(Decimal(match.group()))
        except InvalidOperation:
            return None

    return None


def _clean_name(name: Any, default: str) -> str:
    text = str(name).strip() if name is not None else ""
    if text.startswith(PROMO_MARKER):
        text = text[len(PROMO_MARKER):].strip()
    return text or default


def _first_image(item: Dict[str, Any]) -> Optional[str]:
    images = item.get("images")
    if isinstance(images, list):
        for image in images:
            if isinstance(image, dict) and image.get("url"):
                return image["url"]
    return item.get("imageUrl") or item.get("image_url") or None


def normalize_item(item: Dict[str, Any]) -> NormalizedItem:
    if not isinstance(item, dict):
        raise NormalizationError(f"Menu item is not an object: {type(item).__name__}")

    raw: Dict[str, Any] = {"originalPrice": item.get("price")}
    for key in ("options", "variants"):
        if item.get(key) is not None:
            raw[key] = item[key]

    return NormalizedItem(
        name=_clean_name(item.get("name"), "Unknown Item"),
        description=item.get("description") or None,
        price_cents=parse_price_cents(item.get("price")),
        image_url=_first_image(item),
        raw=raw,
    )


# ── Shape dispatch ────────────────────────────────────────────────────────────

def _item_list_blocks(store: Dict[str, Any]) -> List[tuple]:
    blocks = []
    for key, value in store.items():
        if key.startswith(ITEM_LIST_PREFIX) and isinstance(value, dict):
            if isinstance(value.get("items"), list):
                blocks.append((key, value))
    return blocks


def detect_shape(store: Dict[str, Any]) -> Shape:
    if _item_list_blocks(store):
        return "item_lists"
    if isinstance(store.get("menuCategories"), list) and store["menuCategories"]:
        return "menu_categories"
    if isinstance(store.get("menu"), list) and store["menu"]:
        return "flat"
    return "empty"


def _from_item_lists(store: Dict[str, Any]) -> List[CategoryGroup]:
    blocks = _item_list_blocks(store)
    # stable sort: blocks without sort_order keep their document order at 0
    blocks.sort(key=lambda kv: kv[1].get("sort_order") or 0)
    return [
        CategoryGroup(
            name=display_category_name(block.get("name") or key[len(ITEM_LIST_PREFIX):]),
            items=[normalize_item(i) for i in block["items"]],
        )
        for key, block in blocks
    ]


def _from_menu_categories(store: Dict[str, Any]) -> List[CategoryGroup]:
    groups = []
    for category in store["menuCategories"]:
        if not isinstance(category, dict):
            raise NormalizationError("menuCategories entry is not an object")
        groups.append(
            CategoryGroup(
                name=display_category_name(category.get("name") or DEFAULT_CATEGORY),
                items=[normalize_item(i) for i in category.get("items") or []],
            )
        )
    return groups


def _from_flat(store: Dict[str, Any]) -> List[CategoryGroup]:
    groups: Dict[str, CategoryGroup] = {}
    ungrouped = CategoryGroup(name=DEFAULT_CATEGORY)

    for item in store["menu"]:
        category = None
        if isinstance(item, dict):
            category = item.get("category") or item.get("menuCategory")
        if not category:
            ungrouped.items.append(normalize_item(item))
            continue
        name = display_category_name(str(category))
        groups.setdefault(name, CategoryGroup(name=name)).items.append(normalize_item(item))

    result = list(groups.values())
    if ungrouped.items:
        existing = groups.get(DEFAULT_CATEGORY)
        if existing:
            existing.items.extend(ungrouped.items)
        else:
            result.append(ungrouped)
    return result


_STRATEGIES = {
    "item_lists": _from_item_lists,
    "menu_categories": _from_menu_categories,
    "flat": _from_flat,
    "empty": lambda store: [],
}


def normalize_store(store: Dict[str, Any]) -> List[CategoryGroup]:
    if not isinstance(store, dict):
        raise NormalizationError(f"Store record is not an object: {type(store).__name__}")
    return _STRATEGIES[detect_shape(store)](store)


def extract_venue(store: Dict[str, Any]) -> VenueInfo:
    info = store.get("restaurant") if isinstance(store.get("restaurant"), dict) else {}
    location = info.get("location") if isinstance(info.get("location"), dict) else {}
    address = location.get("address") if isinstance(location.get("address"), dict) else None
    if address is None:
        address = store.get("address") if isinstance(store.get("address"), dict) else {}

    external_id = info.get("id") or store.get("storeId")
    return VenueInfo(
        name=str(info.get("name") or store.get("storeName") or "").strip() or "Unknown Restaurant",
        external_id=str(external_id) if external_id is not None else None,
        address1=address.get("street") or None,
        city=address.get("city") or None,
        state=address.get("state") or None,
        zip=address.get("zipCode") or None,
        phone=store.get("phoneNumber") or None,
    )
