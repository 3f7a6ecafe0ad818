"""Tests for LibraryIndexStore and match_entries."""

import datetime

import pytest

from conftest import INDEX_KEY, sample_document
from sinopulse.core.exceptions import TransientStoreError
from sinopulse.schemas.comparison import LibraryIndex, LibraryIndexEntry
from sinopulse.storage.library_index import LibraryIndexStore, match_entries

pytestmark = pytest.mark.unit

EN = "sino-pulse/v1/en"
ZH = "sino-pulse/v1/zh"


def _at(day: int) -> datetime.datetime:
    return datetime.datetime(2025, 3, day, tzinfo=datetime.UTC)


def _entry(key: str, title_en: str = "", title_zh: str = "", day: int = 1) -> LibraryIndexEntry:
    return LibraryIndexEntry(key=key, title_en=title_en, title_zh=title_zh, category="Economy", last_modified=_at(day))


def _seed_index(fake_s3, *entries: LibraryIndexEntry) -> None:
    fake_s3.seed(INDEX_KEY, LibraryIndex(entries=list(entries)).to_document())


class TestReadIndex:
    async def test_missing_index_is_empty(self, index_store):
        index = await index_store.read_index()
        assert index.entries == []

    @pytest.mark.parametrize("body", [b"not json", b'"a string"', b'{"items": 3}'])
    async def test_corrupt_index_is_empty(self, index_store, fake_s3, body):
        fake_s3.seed(INDEX_KEY, body)
        assert (await index_store.read_index()).entries == []

    async def test_unreachable_index_is_empty(self, index_store, fake_s3):
        _seed_index(fake_s3, _entry(f"{EN}/gdp.json", "GDP"))
        fake_s3.fail_gets = True
        assert (await index_store.read_index()).entries == []

    async def test_reads_entries(self, index_store, fake_s3):
        _seed_index(fake_s3, _entry(f"{EN}/gdp.json", "GDP"))
        index = await index_store.read_index()
        assert index.get(f"{EN}/gdp.json").title_en == "GDP"


class TestListArtifacts:
    async def test_newest_first_and_locale_filter(self, index_store, fake_s3):
        _seed_index(
            fake_s3,
            _entry(f"{EN}/steel.json", "Steel", day=1),
            _entry(f"{ZH}/钢铁.json", "Steel", "钢铁", day=5),
            _entry(f"{EN}/rice.json", "Rice", day=3),
        )

        everything = await index_store.list_artifacts()
        assert [e.key for e in everything] == [f"{ZH}/钢铁.json", f"{EN}/rice.json", f"{EN}/steel.json"]

        english = await index_store.list_artifacts("EN")
        assert [e.key for e in english] == [f"{EN}/rice.json", f"{EN}/steel.json"]

    async def test_titles_repaired_on_listing(self, index_store, fake_s3):
        _seed_index(fake_s3, _entry(f"{ZH}/gdp_per_capita.json", title_en="GDP per capita", title_zh=""))

        [entry] = await index_store.list_artifacts("zh")
        assert entry.title_zh == "人均 GDP"

    async def test_listing_fallback_when_index_missing(self, index_store, fake_s3):
        fake_s3.seed(f"{EN}/steel_output.json", sample_document("steel output"))
        fake_s3.seed(f"{ZH}/粮食产量.json", sample_document("粮食产量", "zh"))

        entries = await index_store.list_artifacts()
        by_key = {e.key: e for e in entries}
        assert by_key[f"{EN}/steel_output.json"].title_en == "Steel Output"
        assert by_key[f"{ZH}/粮食产量.json"].title_zh == "粮食产量"
        assert INDEX_KEY not in by_key

    async def test_listing_fallback_disabled(self, store, fake_s3):
        fake_s3.seed(f"{EN}/steel_output.json", sample_document("steel output"))
        index_store = LibraryIndexStore(store, listing_fallback=False)
        assert await index_store.list_artifacts() == []

    async def test_listing_failure_is_empty(self, index_store, fake_s3):
        fake_s3.fail_lists = True
        assert await index_store.list_artifacts() == []


class TestUpsert:
    async def test_creates_index(self, index_store, fake_s3):
        await index_store.upsert_entry(_entry(f"{EN}/gdp.json", "GDP"))

        document = fake_s3.json(INDEX_KEY)
        assert document["version"] == 1
        assert [item["key"] for item in document["items"]] == [f"{EN}/gdp.json"]
        assert fake_s3.objects[INDEX_KEY]["CacheControl"] == "no-cache"

    async def test_idempotent(self, index_store, fake_s3):
        entry = _entry(f"{EN}/gdp.json", "GDP")
        await index_store.upsert_entry(entry)
        await index_store.upsert_entry(entry)

        index = await index_store.read_index()
        assert [e.key for e in index.entries] == [f"{EN}/gdp.json"]

    async def test_replaces_same_key(self, index_store, fake_s3):
        _seed_index(fake_s3, _entry(f"{EN}/gdp.json", "Old title"), _entry(f"{EN}/rice.json", "Rice"))

        await index_store.upsert_entry(_entry(f"{EN}/gdp.json", "New title", day=9))

        index = await index_store.read_index()
        assert len(index.entries) == 2
        assert index.get(f"{EN}/gdp.json").title_en == "New title"

    async def test_collapses_same_title_within_locale(self, index_store, fake_s3):
        _seed_index(
            fake_s3,
            _entry(f"{EN}/steel.json", "Steel Output"),
            _entry(f"{ZH}/steel.json", "Steel Output", "钢铁产量"),
        )

        await index_store.upsert_entry(_entry(f"{EN}/steel_output.json", "steel  output", day=2))

        keys = {e.key for e in (await index_store.read_index()).entries}
        assert keys == {f"{EN}/steel_output.json", f"{ZH}/steel.json"}

    async def test_transient_read_does_not_clobber_index(self, index_store, fake_s3):
        _seed_index(fake_s3, _entry(f"{EN}/rice.json", "Rice"))
        fake_s3.fail_gets = True

        with pytest.raises(TransientStoreError):
            await index_store.upsert_entry(_entry(f"{EN}/gdp.json", "GDP"))
        assert INDEX_KEY not in fake_s3.put_calls

    async def test_corrupt_index_is_overwritten(self, index_store, fake_s3):
        fake_s3.seed(INDEX_KEY, b"{broken")

        await index_store.upsert_entry(_entry(f"{EN}/gdp.json", "GDP"))

        assert [item["key"] for item in fake_s3.json(INDEX_KEY)["items"]] == [f"{EN}/gdp.json"]

    async def test_write_failure_raises(self, index_store, fake_s3):
        fake_s3.fail_put_keys.add(INDEX_KEY)
        with pytest.raises(TransientStoreError):
            await index_store.upsert_entry(_entry(f"{EN}/gdp.json", "GDP"))

    async def test_remove_entry(self, index_store, fake_s3):
        _seed_index(fake_s3, _entry(f"{EN}/gdp.json", "GDP"), _entry(f"{EN}/rice.json", "Rice"))

        assert await index_store.remove_entry(f"{EN}/gdp.json") is True
        assert await index_store.remove_entry(f"{EN}/gdp.json") is False
        assert [e.key for e in (await index_store.read_index()).entries] == [f"{EN}/rice.json"]


class TestReconcile:
    async def test_drops_bad_entries_and_repairs_titles(self, index_store, fake_s3):
        fake_s3.seed(
            INDEX_KEY,
            {
                "items": [
                    {"key": f"{EN}/co2_emissions.json", "titleEn": "碳排放", "titleZh": "碳排放"},
                    {"titleEn": "no key"},
                    {"key": f"{EN}/rice.json", "titleEn": "Rice"},
                ]
            },
        )

        report = await index_store.reconcile()

        assert report.entries_before == 2
        assert report.entries_after == 2
        assert report.skipped_entries == 1
        assert report.titles_repaired == 1
        assert report.written is True
        index = await index_store.read_index()
        assert index.get(f"{EN}/co2_emissions.json").title_en == "CO2 Emissions"

    async def test_clean_index_is_not_rewritten(self, index_store, fake_s3):
        _seed_index(fake_s3, _entry(f"{EN}/rice.json", "Rice"))
        fake_s3.put_calls.clear()

        report = await index_store.reconcile()

        assert report.written is False
        assert fake_s3.put_calls == []

    async def test_rebuilds_missing_index_from_listing(self, index_store, fake_s3):
        fake_s3.seed(f"{EN}/steel_output.json", sample_document("steel output"))
        fake_s3.seed(f"{EN}/rice.json", sample_document("rice"))

        report = await index_store.reconcile()

        assert report.written is True
        assert report.entries_after == 2
        keys = {e.key for e in (await index_store.read_index()).entries}
        assert keys == {f"{EN}/steel_output.json", f"{EN}/rice.json"}

    async def test_relists_entry_lost_to_concurrent_upsert(self, index_store, fake_s3):
        fake_s3.seed(f"{EN}/rice.json", sample_document("rice"))
        fake_s3.seed(f"{EN}/steel.json", sample_document("steel"))
        _seed_index(fake_s3, _entry(f"{EN}/rice.json", "Rice", day=4))

        report = await index_store.reconcile()

        assert report.entries_before == 1
        assert report.entries_relisted == 1
        assert report.entries_after == 2
        assert report.written is True
        index = await index_store.read_index()
        assert index.get(f"{EN}/rice.json").last_modified == _at(4)
        assert index.get(f"{EN}/steel.json").title_en == "Steel"

    async def test_relisted_entries_get_catalog_titles(self, index_store, fake_s3):
        fake_s3.seed(f"{ZH}/人均_gdp.json", sample_document("人均 GDP", "zh"))

        await index_store.reconcile()

        entry = (await index_store.read_index()).get(f"{ZH}/人均_gdp.json")
        assert (entry.title_en, entry.title_zh) == ("GDP per Capita", "人均 GDP")
        assert entry.category == "Economy"

    async def test_transient_read_raises(self, index_store, fake_s3):
        fake_s3.fail_gets = True
        with pytest.raises(TransientStoreError):
            await index_store.reconcile()

    async def test_listing_failure_raises_without_write(self, index_store, fake_s3):
        _seed_index(fake_s3, _entry(f"{EN}/rice.json", "Rice"))
        fake_s3.fail_lists = True

        with pytest.raises(TransientStoreError):
            await index_store.reconcile()
        assert fake_s3.put_calls == []


class TestMatchEntries:
    def _index(self) -> LibraryIndex:
        return LibraryIndex(
            entries=[
                _entry(f"{EN}/gdp.json", "GDP"),
                _entry(f"{EN}/steel_output.json", "Annual Steel Output"),
                _entry(f"{EN}/crude_steel_output_by_year.json", "Crude steel output by year"),
                _entry(f"{ZH}/steel_output.json", "Annual Steel Output", "钢铁产量"),
            ]
        )

    def test_exact_key_first(self):
        matched = match_entries(self._index(), f"{EN}/gdp.json", "GDP", "en")
        assert matched[0].key == f"{EN}/gdp.json"

    def test_exact_title_match(self):
        matched = match_entries(self._index(), f"{EN}/annual_steel_output.json", "annual steel  OUTPUT", "en")
        assert matched[0].key == f"{EN}/steel_output.json"

    def test_fuzzy_containment_after_exact(self):
        matched = match_entries(self._index(), f"{EN}/steel_output.json", "steel output", "en")
        assert [e.key for e in matched] == [
            f"{EN}/steel_output.json",
            f"{EN}/crude_steel_output_by_year.json",
        ]

    def test_short_request_skips_fuzzy(self):
        matched = match_entries(self._index(), f"{EN}/steel.json", "steel", "en")
        assert matched == []

    def test_other_locale_ignored(self):
        matched = match_entries(self._index(), f"{ZH}/钢铁产量.json", "钢铁产量", "zh")
        assert [e.key for e in matched] == [f"{ZH}/steel_output.json"]
        assert match_entries(self._index(), f"{ZH}/gdp.json", "GDP", "zh") == []
