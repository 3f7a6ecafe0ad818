"""LibraryIndexStore: the shared secondary index of archived comparisons.

One JSON document at ``{folder}/library_index.json`` lists every archived
artifact with its titles, category and last-modified time, so the archive can
be browsed without a bucket-wide listing.

Consistency model:
- The index is advisory. Artifacts are always fetchable by key even if the
  index is missing, stale or corrupt; only the listing degrades.
- Reads never raise: missing / corrupt / unreachable -> empty index.
- Writes are optimistic read-modify-write with NO locking and NO conditional
  write. Two concurrent upserts can read the same base document and the
  later write drops the earlier entry. This lost update is accepted: the
  artifact body is intact and ``reconcile`` re-lists it from the bucket.
"""

from __future__ import annotations

import json

import structlog

from sinopulse.core.exceptions import ArtifactNotFoundError, IndexCorruptError, SinoPulseError
from sinopulse.domain.titles import has_cjk, match_topic, repair_titles
from sinopulse.schemas.comparison import (
    LibraryIndex,
    LibraryIndexEntry,
    ReconcileReport,
    normalize_title,
)
from sinopulse.storage.artifact_store import ArchivedObject, ArtifactStoreClient
from sinopulse.storage.keys import (
    DEFAULT_DATA_FOLDER,
    index_key,
    locale_from_key,
    locale_prefix,
    normalize_locale,
    slug_from_key,
    title_from_slug,
)

logger = structlog.get_logger(__name__)

# The index changes on every archive write; keep CDN copies short-lived
INDEX_CACHE_CONTROL = "no-cache"

class LibraryIndexStore:
    """Reads and maintains the library index document."""

    def __init__(
        self,
        store: ArtifactStoreClient,
        folder: str = DEFAULT_DATA_FOLDER,
        listing_fallback: bool = True,
    ) -> None:
        self._store = store
        self._folder = folder.strip("/")
        self._key = index_key(self._folder)
        self._listing_fallback = listing_fallback

    @property
    def key(self) -> str:
        return self._key

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def read_index(self) -> LibraryIndex:
        """Read the index via public-then-authenticated path. Never raises."""
        try:
            raw = await self._store.read_raw(self._key)
        except ArtifactNotFoundError:
            logger.info("library_index_missing", key=self._key)
            return LibraryIndex.empty()
        except SinoPulseError as exc:
            logger.warning("library_index_read_failed", key=self._key, error=str(exc), error_type=type(exc).__name__)
            return LibraryIndex.empty()

        try:
            index, skipped = self._parse(raw)
        except IndexCorruptError as exc:
            logger.warning("library_index_corrupt", key=self._key, error=str(exc))
            return LibraryIndex.empty()
        if skipped:
            logger.info("library_index_entries_skipped", key=self._key, skipped=skipped)
        return index

    async def list_artifacts(self, locale: str | None = None) -> list[LibraryIndexEntry]:
        """List archived artifacts newest-first, optionally for one locale. Never raises.

        Falls back to a raw bucket listing (filename-derived titles) when the
        index has no entries at all.
        """
        index = await self.read_index()
        wanted = normalize_locale(locale) if locale else None

        if index.entries:
            entries = [e for e in index.entries if wanted is None or locale_from_key(e.key) == wanted]
        elif self._listing_fallback:
            prefix = locale_prefix(wanted, self._folder) if wanted else f"{self._folder}/"
            entries = await self._entries_from_listing(prefix)
        else:
            entries = []

        repaired = [self._repair_entry(e)[0] for e in entries]
        return sorted(repaired, key=lambda e: e.last_modified, reverse=True)

    # ------------------------------------------------------------------
    # Writes (read-modify-write, lost updates accepted)
    # ------------------------------------------------------------------

    async def upsert_entry(self, entry: LibraryIndexEntry) -> None:
        """Insert or replace the entry for entry.key.

        Also drops entries in the same locale whose title matches the new
        entry, collapsing near-duplicate topics archived under slightly
        different request text.

        Raises:
            TransientStoreError: the consistent read or the write failed
        """
        index = await self._read_for_update()
        entry_locale = locale_from_key(entry.key)
        titles = entry.titles()

        kept = [
            e
            for e in index.entries
            if e.key != entry.key and not (locale_from_key(e.key) == entry_locale and titles & e.titles())
        ]
        replaced = len(index.entries) - len(kept)
        kept.append(entry)

        await self._write(LibraryIndex(entries=kept))
        logger.info("library_index_upserted", key=entry.key, replaced=replaced, entry_count=len(kept))

    async def remove_entry(self, key: str) -> bool:
        """Remove the entry for key. Returns True if an entry was removed."""
        index = await self._read_for_update()
        if index.get(key) is None:
            return False
        kept = [e for e in index.entries if e.key != key]
        await self._write(LibraryIndex(entries=kept))
        logger.info("library_index_entry_removed", key=key, entry_count=len(kept))
        return True

    async def reconcile(self) -> ReconcileReport:
        """Repair the index in place.

        Drops malformed and duplicate-key entries, re-lists archived artifacts
        that have no entry (lost to concurrent upserts, or the whole document
        when it is missing or corrupt) and repairs titles from the topic
        catalog. Writes only if something changed.

        Raises:
            TransientStoreError: the index read or the bucket listing failed
        """
        skipped = 0
        try:
            raw = await self._store.read_raw_authenticated(self._key)
            index, skipped = self._parse(raw)
        except ArtifactNotFoundError:
            index = LibraryIndex.empty()
        except IndexCorruptError as exc:
            logger.warning("library_index_corrupt_rebuilding", key=self._key, error=str(exc))
            index = LibraryIndex.empty()

        before = len(index.entries)
        known = {e.key for e in index.entries}
        objects = await self._store.list_objects(f"{self._folder}/")
        relisted = [e for e in self._entries_from_objects(objects) if e.key not in known]

        repaired_entries = []
        titles_repaired = 0
        for entry in index.entries + relisted:
            fixed, changed = self._repair_entry(entry)
            titles_repaired += int(changed)
            repaired_entries.append(fixed)

        written = False
        if skipped or titles_repaired or relisted:
            await self._write(LibraryIndex(entries=repaired_entries))
            written = True

        report = ReconcileReport(
            entries_before=before,
            entries_after=len(repaired_entries),
            entries_relisted=len(relisted),
            skipped_entries=skipped,
            titles_repaired=titles_repaired,
            written=written,
        )
        logger.info("library_index_reconciled", **report.model_dump())
        return report

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _parse(self, raw: bytes) -> tuple[LibraryIndex, int]:
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise IndexCorruptError(f"Index document is not valid JSON: {exc}") from exc
        return LibraryIndex.from_payload(payload)

    async def _read_for_update(self) -> LibraryIndex:
        """Authenticated read so the write is based on the origin copy, not a CDN copy."""
        try:
            raw = await self._store.read_raw_authenticated(self._key)
        except ArtifactNotFoundError:
            return LibraryIndex.empty()
        try:
            index, _ = self._parse(raw)
        except IndexCorruptError as exc:
            logger.warning("library_index_corrupt_overwriting", key=self._key, error=str(exc))
            return LibraryIndex.empty()
        return index

    async def _write(self, index: LibraryIndex) -> None:
        body = json.dumps(index.to_document(), ensure_ascii=False).encode("utf-8")
        await self._store.write_raw(self._key, body, cache_control=INDEX_CACHE_CONTROL)

    async def _entries_from_listing(self, prefix: str) -> list[LibraryIndexEntry]:
        """Degraded path: reconstruct entries from object keys. Never raises."""
        try:
            objects = await self._store.list_objects(prefix)
        except SinoPulseError as exc:
            logger.warning("library_listing_fallback_failed", prefix=prefix, error=str(exc))
            return []

        entries = self._entries_from_objects(objects)
        logger.info("library_listing_fallback_used", prefix=prefix, entry_count=len(entries))
        return entries

    def _entries_from_objects(self, objects: list[ArchivedObject]) -> list[LibraryIndexEntry]:
        """Index entries with filename-derived titles for the artifact objects of a listing."""
        entries = []
        for obj in objects:
            if not obj.key.endswith(".json") or obj.key == self._key:
                continue
            pretty = title_from_slug(slug_from_key(obj.key))
            topic, _ = match_topic(obj.key)
            entries.append(
                LibraryIndexEntry(
                    key=obj.key,
                    title_en="" if has_cjk(pretty) else pretty,
                    title_zh=pretty if has_cjk(pretty) else "",
                    category=topic.category if topic else "Custom",
                    last_modified=obj.last_modified,
                )
            )
        return entries

    @staticmethod
    def _repair_entry(entry: LibraryIndexEntry) -> tuple[LibraryIndexEntry, bool]:
        result = repair_titles(entry.key, entry.title_en, entry.title_zh)
        if not result.repaired:
            return entry, False
        return entry.model_copy(update={"title_en": result.title_en, "title_zh": result.title_zh}), True


def match_entries(
    index: LibraryIndex,
    key: str,
    request_text: str,
    locale: str,
    min_fuzzy_length: int = 8,
) -> list[LibraryIndexEntry]:
    """Index entries that may hold the artifact for a request, best match first.

    Priority: exact key, exact title, then loose containment on titles. The
    containment pass only runs for requests of at least min_fuzzy_length
    characters so short common words ("gdp") do not match unrelated topics.
    Only entries of the request's locale are considered.
    """
    wanted_locale = normalize_locale(locale)
    candidates = [e for e in index.entries if locale_from_key(e.key) == wanted_locale]
    wanted = normalize_title(request_text)

    matched: list[LibraryIndexEntry] = [e for e in candidates if e.key == key]
    matched_keys = {e.key for e in matched}

    for entry in candidates:
        if entry.key not in matched_keys and wanted in entry.titles():
            matched.append(entry)
            matched_keys.add(entry.key)

    if len(wanted) >= min_fuzzy_length:
        for entry in candidates:
            if entry.key in matched_keys:
                continue
            if any(len(t) >= min_fuzzy_length and (wanted in t or t in wanted) for t in entry.titles()):
                matched.append(entry)
                matched_keys.add(entry.key)

    return matched
