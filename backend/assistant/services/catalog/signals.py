from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from assistant.core.config import Settings, settings as default_settings
from assistant.core.logging import get_logger
from assistant.schemas.product import Product
from assistant.services.cache.ttl_cache import TTLCache

logger = get_logger(__name__)

SIGNALS_CACHE_KEY = "catalog:signals"


def _coerce_id(item: Any) -> Optional[str]:
    if isinstance(item, str):
        return item.strip() or None
    if isinstance(item, (int, float)) and not isinstance(item, bool):
        return str(item)
    if isinstance(item, dict):
        inner = item.get("productId", item.get("_id", item.get("id")))
        if isinstance(inner, dict):
            inner = inner.get("_id") or inner.get("id")
        return _coerce_id(inner)
    return None


class MarketplaceSignals(BaseModel):
    """Curated id lists. Order is editorial rank and is kept as-is."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    featured: List[str] = Field(default_factory=list)
    best_selling: List[str] = Field(default_factory=list, alias="bestSelling")
    recently_added: List[str] = Field(default_factory=list, alias="recentlyAdded")

    @field_validator("featured", "best_selling", "recently_added", mode="before")
    @classmethod
    def _ids(cls, value: Any) -> List[str]:
        if not isinstance(value, list):
            return []
        return [i for i in (_coerce_id(item) for item in value) if i]


def _rankings(payload: Any) -> Dict[str, List[str]]:
    if not isinstance(payload, dict):
        return {}
    out: Dict[str, List[str]] = {}
    for name, ids in payload.items():
        if not isinstance(name, str) or not isinstance(ids, list):
            continue
        out[name] = [i for i in (_coerce_id(item) for item in ids) if i]
    return out


@dataclass(frozen=True)
class SignalsBundle:
    signals: MarketplaceSignals = field(default_factory=MarketplaceSignals)
    category_rankings: Dict[str, List[str]] = field(default_factory=dict)
    oem_rankings: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def empty(cls) -> "SignalsBundle":
        return cls()

    @property
    def is_empty(self) -> bool:
        s = self.signals
        return not (s.featured or s.best_selling or s.recently_added or self.category_rankings or self.oem_rankings)


class SignalsLoader:
    def __init__(self, cache: TTLCache, *, config: Optional[Settings] = None):
        self.cache = cache
        self.config = config or default_settings

    async def load(self) -> SignalsBundle:
        try:
            return await self.cache.get_or_fetch(
                SIGNALS_CACHE_KEY,
                self.config.SIGNALS_TTL_SECONDS,
                self._fetch,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning(f"Marketplace signals unavailable: {exc}")
            return SignalsBundle.empty()

    async def _fetch(self) -> SignalsBundle:
        return await asyncio.to_thread(self._read_files)

    def _read_files(self) -> SignalsBundle:
        base: Path = self.config.data_path
        signals_raw = _read_json(base / self.config.SIGNALS_FILE)
        bundle = SignalsBundle(
            signals=MarketplaceSignals.model_validate(signals_raw if isinstance(signals_raw, dict) else {}),
            category_rankings=_rankings(_read_json(base / self.config.CATEGORY_RANKINGS_FILE)),
            oem_rankings=_rankings(_read_json(base / self.config.OEM_RANKINGS_FILE)),
        )
        s = bundle.signals
        logger.info(
            f"Loaded marketplace signals: best_selling={len(s.best_selling)} featured={len(s.featured)} "
            f"recently_added={len(s.recently_added)} categories={len(bundle.category_rankings)} "
            f"oems={len(bundle.oem_rankings)}"
        )
        return bundle


def _read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def resolve_products_by_ids(product_ids: Iterable[str], products: Sequence[Product]) -> List[Product]:
    """Map ids to products in id order. Unknown ids are skipped."""
    if not product_ids or not products:
        return []
    by_id = {p.id: p for p in products}
    return [by_id[pid] for pid in product_ids if pid in by_id]


# ---------------------------------------------------------------------------
# Flag resolution
#
# Each flag has an ordered strategy chain. A strategy returns the set of ids
# that carry the flag, or None when it has no opinion. The first strategy that
# returns a set decides the flag for every product.
# ---------------------------------------------------------------------------


class FlagStrategy(Protocol):
    name: str

    def decide(self, products: Sequence[Product], now: datetime) -> Optional[Set[str]]: ...


@dataclass(frozen=True)
class SignalListStrategy:
    ids: Tuple[str, ...]
    name: str = "signal_list"

    def decide(self, products: Sequence[Product], now: datetime) -> Optional[Set[str]]:
        resolved = {p.id for p in resolve_products_by_ids(self.ids, products)}
        return resolved or None


@dataclass(frozen=True)
class ApiFlagStrategy:
    attribute: str
    name: str = "api_flag"

    def decide(self, products: Sequence[Product], now: datetime) -> Optional[Set[str]]:
        flagged = {p.id for p in products if getattr(p, self.attribute, False)}
        return flagged or None


@dataclass(frozen=True)
class CreatedWithinStrategy:
    """Products created in the last `days`; if none, the `limit` most recent."""

    days: int = 30
    limit: int = 20
    name: str = "created_date"

    def decide(self, products: Sequence[Product], now: datetime) -> Optional[Set[str]]:
        dated = [p for p in products if p.created_at is not None]
        if not dated:
            return None
        cutoff = now - timedelta(days=self.days)
        recent = {p.id for p in dated if p.created_at >= cutoff}
        if recent:
            return recent
        newest = sorted(dated, key=lambda p: p.created_at, reverse=True)[: self.limit]
        return {p.id for p in newest}


@dataclass(frozen=True)
class KeywordBestSellerStrategy:
    """Microsoft 365 E3/E5 style plans, excluding security and compliance add-ons."""

    limit: int = 10
    plan_markers: Tuple[str, ...] = ("e3", "e5", "365")
    excluded: Tuple[str, ...] = ("security", "compliance")
    name: str = "keyword_heuristic"

    def decide(self, products: Sequence[Product], now: datetime) -> Optional[Set[str]]:
        matches: List[str] = []
        for p in products:
            name = p.name.lower()
            if "microsoft" not in name:
                continue
            if not any(marker in name for marker in self.plan_markers):
                continue
            if any(word in name for word in self.excluded):
                continue
            matches.append(p.id)
            if len(matches) >= self.limit:
                break
        return set(matches) or None


FLAG_ATTRIBUTES = ("is_featured", "is_top_selling", "is_latest")


def build_flag_chains(
    signals: MarketplaceSignals,
    *,
    config: Optional[Settings] = None,
) -> Dict[str, List[FlagStrategy]]:
    cfg = config or default_settings
    return {
        "is_featured": [
            ApiFlagStrategy("api_featured"),
            SignalListStrategy(tuple(signals.featured)),
        ],
        "is_top_selling": [
            ApiFlagStrategy("api_top_selling"),
            SignalListStrategy(tuple(signals.best_selling)),
            KeywordBestSellerStrategy(),
        ],
        "is_latest": [
            ApiFlagStrategy("api_latest"),
            SignalListStrategy(tuple(signals.recently_added)),
            CreatedWithinStrategy(
                days=cfg.RECENTLY_ADDED_FALLBACK_DAYS,
                limit=cfg.RECENTLY_ADDED_FALLBACK_LIMIT,
            ),
        ],
    }


def resolve_flag(
    strategies: Sequence[FlagStrategy],
    products: Sequence[Product],
    now: datetime,
) -> Tuple[Set[str], Optional[str]]:
    for strategy in strategies:
        decided = strategy.decide(products, now)
        if decided is not None:
            return decided, strategy.name
    return set(), None


def apply_signals(
    products: Sequence[Product],
    signals: MarketplaceSignals,
    *,
    now: Optional[datetime] = None,
    config: Optional[Settings] = None,
) -> Dict[str, Optional[str]]:
    """Recompute the three flags on `products` in place.

    Returns which strategy decided each flag (None when no strategy had an
    opinion). Product identity is never touched.
    """
    now = now or datetime.now(timezone.utc)
    decided_by: Dict[str, Optional[str]] = {}
    for attribute, chain in build_flag_chains(signals, config=config).items():
        ids, source = resolve_flag(chain, products, now)
        for product in products:
            setattr(product, attribute, product.id in ids)
        decided_by[attribute] = source
        logger.debug(f"flag {attribute}: {len(ids)} products via {source}")
    return decided_by
