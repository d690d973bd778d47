from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

STORE_NAME_PREFIX = "De Mello Coffee - "


@dataclass(frozen=True)
class CatalogEntity:
    id: str
    name: str
    aliases: tuple[str, ...]

    @property
    def store_name(self) -> str:
        return self.name if self.name == "HQ" else f"{STORE_NAME_PREFIX}{self.name}"


LOCATIONS: tuple[CatalogEntity, ...] = (
    CatalogEntity("LZEVY2P88KZA8", "HQ", ("hq", "main", "head office", "headquarters")),
    CatalogEntity("LAH170A0KK47P", "Yonge", ("yonge", "yonge street")),
    CatalogEntity("LPSSMJYZX8X7P", "Bloor", ("bloor", "bloor street")),
    CatalogEntity("LT8YK4FBNGH17", "The Well", ("well", "the well", "spadina")),
    CatalogEntity("LDPNNFWBTFB26", "Broadway", ("broadway",)),
    CatalogEntity("LYJ3TVBQ23F5V", "Kingston", ("kingston", "brock street")),
)

ITEMS: tuple[CatalogEntity, ...] = (
    CatalogEntity("coffee", "Coffee", ("coffee", "espresso", "americano")),
    CatalogEntity("latte", "Latte", ("latte", "cafe latte")),
    CatalogEntity("tea", "Tea", ("tea", "chai")),
)

LOCATION_IDS = tuple(entity.id for entity in LOCATIONS)
LOCATION_NAMES = tuple(entity.name for entity in LOCATIONS)
ITEM_IDS = tuple(entity.id for entity in ITEMS)

_LOCATIONS_BY_ID = {entity.id: entity for entity in LOCATIONS}
_ITEMS_BY_ID = {entity.id: entity for entity in ITEMS}


def _tokens(text: str) -> list[str]:
    return re.findall(r"[a-z0-9]+", (text or "").lower())


def _alias_matches(alias: str, normalized: str) -> bool:
    return re.search(r"(?<![a-z0-9])" + re.escape(alias) + r"(?![a-z0-9])", normalized) is not None


_NAME_STOPWORDS = {"the", "and", "for", "coffee", "mello"}


def _key_tokens(name: str) -> set[str]:
    return {token for token in _tokens(name) if len(token) > 2 and token not in _NAME_STOPWORDS}


def resolve_entities(text: str, catalog: Iterable[CatalogEntity]) -> list[str]:
    """Return ids of every entity whose alias or key name token appears in ``text``.

    Multiple matches are all returned in catalog order; no match is an empty list.
    """
    normalized = " ".join(_tokens(text))
    if not normalized:
        return []
    text_tokens = set(normalized.split())
    matches: list[str] = []
    for entity in catalog:
        if any(_alias_matches(alias, normalized) for alias in entity.aliases):
            matches.append(entity.id)
            continue
        if _key_tokens(entity.name) & text_tokens:
            matches.append(entity.id)
    return matches


def resolve_locations(text: str) -> list[str]:
    return resolve_entities(text, LOCATIONS)


def resolve_items(text: str) -> list[str]:
    return resolve_entities(text, ITEMS)


def location_by_id(location_id: str) -> CatalogEntity | None:
    return _LOCATIONS_BY_ID.get(location_id)


def item_by_id(item_id: str) -> CatalogEntity | None:
    return _ITEMS_BY_ID.get(item_id)


def location_name(location_id: str) -> str:
    entity = _LOCATIONS_BY_ID.get(location_id)
    return entity.name if entity else location_id


def location_id_for_name(name: str | None) -> str | None:
    """Map a display name, store name or alias to a single location id."""
    if not name:
        return None
    stripped = name.strip()
    if stripped in _LOCATIONS_BY_ID:
        return stripped
    if stripped.lower().startswith(STORE_NAME_PREFIX.lower()):
        stripped = stripped[len(STORE_NAME_PREFIX):]
    for entity in LOCATIONS:
        if entity.name.lower() == stripped.lower():
            return entity.id
    matches = resolve_locations(stripped)
    return matches[0] if len(matches) == 1 else None


def item_id_for_name(name: str | None) -> str | None:
    """Map an item id, name or alias to a single catalog item id."""
    if not name:
        return None
    stripped = name.strip().lower()
    if stripped in _ITEMS_BY_ID:
        return stripped
    for entity in ITEMS:
        if entity.name.lower() == stripped:
            return entity.id
    matches = resolve_items(stripped)
    return matches[0] if len(matches) == 1 else None


def item_matches(item_id: str, line_item_name: str) -> bool:
    """True when a sold line item belongs to a catalog item or named item."""
    entity = _ITEMS_BY_ID.get(item_id)
    normalized = " ".join(_tokens(line_item_name))
    if entity is None:
        needle = " ".join(_tokens(item_id))
        return bool(needle) and needle in normalized
    return any(_alias_matches(alias, normalized) for alias in entity.aliases)
