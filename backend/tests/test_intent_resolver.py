from __future__ import annotations

import asyncio

import pytest

from assistant.schemas.taxonomy import CategoryNode, Oem, Taxonomy
from assistant.services.cache.ttl_cache import ManualClock, TTLCache
from assistant.services.intent.resolver import (
    Intent,
    IntentResolver,
    build_listing_urls,
    is_domain_related,
    is_greeting,
)
from assistant.services.taxonomy.keywords import (
    STATIC_KEYWORD_TABLE,
    KeywordEntry,
    KeywordTableProvider,
    build_keyword_table,
    expand_keywords,
)

BASE_URL = "https://shop.skysecure.ai/"
DATA_MANAGEMENT_ID = "6942ac70d91c1f7c88d02bad"
MICROSOFT_ID = "68931b8d7874310ffca28d65"


class _FakeFetcher:
    def __init__(self, taxonomy: Taxonomy):
        self.taxonomy = taxonomy
        self.calls = 0

    async def fetch(self) -> Taxonomy:
        self.calls += 1
        return self.taxonomy


def _live_taxonomy() -> Taxonomy:
    return Taxonomy(
        categories=[
            CategoryNode(
                id="cat-1",
                name="Software",
                children=[
                    CategoryNode(id="sub-data", name="Data Management", level=2),
                    CategoryNode(id="sub-sec", name="Endpoint Security", level=2),
                ],
            )
        ],
        oems=[Oem(id="oem-ms", name="Microsoft", keywords=["m365"])],
        source="live",
    )


def test_static_table_resolves_sql_to_data_management() -> None:
    intent = IntentResolver(None, BASE_URL).resolve_with_table(
        "show me sql products", STATIC_KEYWORD_TABLE.categories, STATIC_KEYWORD_TABLE.oems
    )
    assert intent.sub_category_id == DATA_MANAGEMENT_ID
    assert intent.category_name == "Data Management"
    assert intent.confidence == pytest.approx(0.95)
    assert intent.listing_urls == (f"https://shop.skysecure.ai/products?subCategoryId={DATA_MANAGEMENT_ID}",)


def test_first_matching_entry_wins_over_later_better_match() -> None:
    entries = (
        KeywordEntry("first", "First", ("tools",)),
        KeywordEntry("second", "Collaboration Tools", ("collaboration tools",)),
    )
    intent = IntentResolver(None, BASE_URL).resolve_with_table("collaboration tools please", entries, ())
    assert intent.sub_category_id == "first"


def test_fuzzy_match_requires_every_word() -> None:
    entries = (KeywordEntry("dm", "Data Management", ("data management",)),)
    resolver = IntentResolver(None, BASE_URL)
    assert resolver.resolve_with_table("management of our data", entries, ()).confidence == pytest.approx(0.85)
    assert resolver.resolve_with_table("management only", entries, ()).is_empty


def test_oem_match_raises_confidence_floor() -> None:
    intent = IntentResolver(None, BASE_URL).resolve_with_table(
        "anything from microsoft", STATIC_KEYWORD_TABLE.categories, STATIC_KEYWORD_TABLE.oems
    )
    assert intent.oem_id == MICROSOFT_ID
    assert intent.sub_category_id is None
    assert intent.confidence == pytest.approx(0.8)
    assert intent.listing_urls == (f"https://shop.skysecure.ai/products?oemId={MICROSOFT_ID}",)


def test_no_match_returns_empty_intent() -> None:
    intent = IntentResolver(None, BASE_URL).resolve_with_table(
        "hmm", STATIC_KEYWORD_TABLE.categories, STATIC_KEYWORD_TABLE.oems
    )
    assert intent == Intent.none()
    assert intent.confidence == 0.0


def test_listing_urls_use_site_origin_only() -> None:
    urls = build_listing_urls("https://shop.skysecure.ai/some/path?x=1", "s1", "o1")
    assert urls == (
        "https://shop.skysecure.ai/products?subCategoryId=s1",
        "https://shop.skysecure.ai/products?oemId=o1",
    )
    assert build_listing_urls("not a url", "s1", None) == ()


def test_expand_keywords_adds_words_synonyms_and_extras() -> None:
    from assistant.services.taxonomy.keywords import CATEGORY_SYNONYMS

    keywords = expand_keywords("Data Management", CATEGORY_SYNONYMS, ["Warehouse"])
    assert keywords[:3] == ("data management", "data", "management")
    assert "sql" in keywords and "warehouse" in keywords
    assert len(keywords) == len(set(keywords))


def test_build_keyword_table_from_live_taxonomy() -> None:
    table = build_keyword_table(_live_taxonomy())
    assert table.source == "live"
    assert [e.label for e in table.categories] == ["Data Management", "Endpoint Security"]
    assert "m365" in table.oems[0].keywords


def test_build_keyword_table_empty_taxonomy_uses_static_table() -> None:
    assert build_keyword_table(Taxonomy()) is STATIC_KEYWORD_TABLE


def test_build_keyword_table_falls_back_per_side() -> None:
    taxonomy = Taxonomy(oems=[Oem(id="oem-x", name="Sophos")], source="live")
    table = build_keyword_table(taxonomy)
    assert table.categories == STATIC_KEYWORD_TABLE.categories
    assert [e.id for e in table.oems] == ["oem-x"]


@pytest.mark.asyncio
async def test_resolve_uses_live_table_and_caches_it() -> None:
    fetcher = _FakeFetcher(_live_taxonomy())
    provider = KeywordTableProvider(fetcher, TTLCache(clock=ManualClock()))
    resolver = IntentResolver(provider, BASE_URL)

    intent = await resolver.resolve("need endpoint security for m365")
    again = await resolver.resolve("data management")

    assert intent.sub_category_id == "sub-sec"
    assert intent.oem_id == "oem-ms"
    assert again.sub_category_id == "sub-data"
    assert fetcher.calls == 1


@pytest.mark.asyncio
async def test_empty_taxonomy_falls_back_to_static_and_retries_next_time() -> None:
    fetcher = _FakeFetcher(Taxonomy())
    resolver = IntentResolver(KeywordTableProvider(fetcher, TTLCache(clock=ManualClock())), BASE_URL)

    intent = await resolver.resolve("sql server")
    assert intent.sub_category_id == DATA_MANAGEMENT_ID

    fetcher.taxonomy = _live_taxonomy()
    intent = await resolver.resolve("endpoint security")
    assert intent.sub_category_id == "sub-sec"
    assert fetcher.calls == 2


@pytest.mark.asyncio
async def test_resolve_never_raises_on_provider_failure() -> None:
    class _Broken:
        async def get_table(self):
            raise RuntimeError("boom")

    assert await IntentResolver(_Broken(), BASE_URL).resolve("sql") == Intent.none()


@pytest.mark.asyncio
async def test_resolve_propagates_cancellation() -> None:
    class _Hangs:
        async def get_table(self):
            await asyncio.sleep(60)

    task = asyncio.ensure_future(IntentResolver(_Hangs(), BASE_URL).resolve("sql"))
    await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.parametrize("message", ["hi", "Hello!", "hey there", "good morning team"])
def test_greetings(message: str) -> None:
    assert is_greeting(message)


@pytest.mark.parametrize("message", ["hi, what sql products do you sell?", "history of rome", ""])
def test_not_greetings(message: str) -> None:
    assert not is_greeting(message)


def test_domain_related_is_conservative() -> None:
    assert is_domain_related("what's the weather today") is False
    assert is_domain_related("tell me a joke about licenses") is True
    assert is_domain_related("what can you do") is True
    assert is_domain_related("weather", Intent(sub_category_id="x")) is True
