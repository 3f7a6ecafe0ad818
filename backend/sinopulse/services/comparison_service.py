"""ComparisonService: read-through archive cache in front of the generation backend.

Per request:

    idle -> looking-up -> hit: done
                       -> miss: generating -> returned to caller
                                 (detached) writing-back -> synced | sync-failed

- Lookup tries the derived key first (exact, always wins), then index entries
  matched by title. Every read failure degrades to a miss.
- Generation is gated by ``can_generate``; a denied caller never reaches the backend.
- The generated artifact is returned immediately. Write-back (artifact body,
  then index entry) runs as an asyncio.Task handed to the caller, so user
  latency is bounded by generation time only.
- No automatic retry of failed write-backs; a forced refresh regenerates and
  writes again.
"""

from __future__ import annotations

import asyncio
import datetime
from collections import OrderedDict
from dataclasses import dataclass

import structlog
from pydantic import ValidationError

from sinopulse.core.config import Settings
from sinopulse.core.exceptions import (
    ArtifactNotFoundError,
    MalformedArtifactError,
    PermissionDeniedError,
    SinoPulseError,
)
from sinopulse.domain.titles import repair_titles
from sinopulse.generation.backend import GenerationBackend, build_generation_backend
from sinopulse.schemas.comparison import (
    ComparisonArtifact,
    LibraryIndexEntry,
    Provenance,
    ReconcileReport,
    SyncState,
)
from sinopulse.storage.artifact_store import ArtifactStoreClient
from sinopulse.storage.keys import DEFAULT_DATA_FOLDER, derive_key, index_key, locale_from_key, normalize_locale
from sinopulse.storage.library_index import LibraryIndexStore, match_entries

logger = structlog.get_logger(__name__)

SUMMARY_PREVIEW_CHARS = 280
# Write-back outcomes kept for status polling; oldest keys are evicted first
SYNC_STATE_CAPACITY = 1024


@dataclass
class ComparisonResult:
    """Artifact handed to the caller plus the optional write-back handle."""

    key: str
    artifact: ComparisonArtifact
    sync_handle: asyncio.Task[SyncState] | None = None

    @property
    def sync_state(self) -> SyncState | None:
        if self.sync_handle is None:
            return None
        if not self.sync_handle.done():
            return SyncState.PENDING
        if self.sync_handle.cancelled():
            return SyncState.SYNC_FAILED
        return self.sync_handle.result()


class ComparisonService:
    """Orchestrates archive lookup, generation and background write-back.

    Collaborators are injected so tests can pass fakes:
        service = ComparisonService(store, LibraryIndexStore(store), GenerationFake())
    """

    def __init__(
        self,
        store: ArtifactStoreClient,
        index_store: LibraryIndexStore,
        backend: GenerationBackend,
        data_folder: str = DEFAULT_DATA_FOLDER,
        fuzzy_match_min_length: int = 8,
    ) -> None:
        self._store = store
        self._index = index_store
        self._backend = backend
        self._folder = data_folder.strip("/")
        self._fuzzy_match_min_length = fuzzy_match_min_length
        # Strong references so pending write-backs are not garbage collected
        self._background: set[asyncio.Task[SyncState]] = set()
        self._sync_states: OrderedDict[str, SyncState] = OrderedDict()

    @classmethod
    def from_settings(cls, settings: Settings) -> ComparisonService:
        store = ArtifactStoreClient.from_settings(settings)
        return cls(
            store=store,
            index_store=LibraryIndexStore(
                store,
                folder=settings.data_folder,
                listing_fallback=settings.index_listing_fallback,
            ),
            backend=build_generation_backend(settings),
            data_folder=settings.data_folder,
            fuzzy_match_min_length=settings.fuzzy_match_min_length,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_comparison(
        self,
        request_text: str,
        locale: str,
        force_refresh: bool = False,
        can_generate: bool = False,
    ) -> ComparisonResult:
        """Return an archived comparison, or generate and archive a new one.

        Raises:
            ValueError: request_text is blank
            PermissionDeniedError: generation needed but can_generate is False
            GenerationError: the backend failed
            MalformedArtifactError: the backend returned an invalid document
        """
        if not request_text or not request_text.strip():
            raise ValueError("request_text must not be blank")

        locale = normalize_locale(locale)
        key = derive_key(request_text, locale, self._folder)
        log = logger.bind(key=key, locale=locale)

        if not force_refresh:
            cached = await self._lookup(key, request_text, locale)
            if cached is not None:
                served_key, artifact = cached
                log.info("artifact_cache_hit", served_key=served_key)
                return ComparisonResult(key=served_key, artifact=artifact)
            log.info("artifact_cache_miss")

        if not can_generate:
            log.info("generation_denied", force_refresh=force_refresh)
            raise PermissionDeniedError("Generating a new comparison requires an authorized account")

        payload = await self._backend.generate(request_text, locale)
        artifact = self._validate(payload, locale)

        handle = asyncio.create_task(self._write_back(key, artifact), name=f"write-back:{key}")
        self._background.add(handle)
        self._record_sync_state(key, SyncState.PENDING)
        handle.add_done_callback(lambda task: self._on_write_back_done(key, task))

        log.info("artifact_generated", sample_count=len(artifact.data), force_refresh=force_refresh)
        return ComparisonResult(key=key, artifact=artifact, sync_handle=handle)

    async def fetch_by_key(self, key: str) -> ComparisonArtifact:
        """Direct read of an archived artifact, bypassing text matching.

        Raises:
            ArtifactNotFoundError: unknown key, or key outside the archive folder
            TransientStoreError: store unreachable
            MalformedArtifactError: stored body is invalid
        """
        self._require_archive_key(key)
        return await self._store.read_artifact(key)

    async def list_archived(self, locale: str | None = None) -> list[LibraryIndexEntry]:
        """Archive listing, newest first. Never raises."""
        return await self._index.list_artifacts(locale)

    async def delete_archived(self, key: str) -> None:
        """Administrative delete: remove the object, then its index entry."""
        self._require_archive_key(key)
        await self._store.delete(key)
        await self._index.remove_entry(key)

    async def update_archived(self, key: str, document: dict) -> ComparisonArtifact:
        """Administrative edit: replace an archived artifact, then refresh its index entry.

        Raises:
            ArtifactNotFoundError: unknown key, or key outside the archive folder
            MalformedArtifactError: document is not a valid artifact
            TransientStoreError: store unreachable
        """
        self._require_archive_key(key)
        await self._store.read_raw_authenticated(key)
        artifact = self._validate(document, locale_from_key(key) or "")

        await self._store.write_artifact(key, artifact)
        await self._index.upsert_entry(self._index_entry(key, artifact))
        artifact.provenance = Provenance.ARCHIVED
        logger.info("artifact_updated", key=key)
        return artifact

    async def reconcile_index(self) -> ReconcileReport:
        return await self._index.reconcile()

    def sync_status(self, key: str) -> SyncState | None:
        """Latest write-back outcome for key, None if no write-back is remembered."""
        return self._sync_states.get(key)

    async def wait_for_background_sync(self) -> None:
        """Wait for all pending write-backs (shutdown drain, tests)."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        await self.wait_for_background_sync()
        await self._store.aclose()

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _lookup(self, key: str, request_text: str, locale: str) -> tuple[str, ComparisonArtifact] | None:
        artifact = await self._read_or_none(key)
        if artifact is not None:
            return key, artifact

        index = await self._index.read_index()
        for entry in match_entries(index, key, request_text, locale, self._fuzzy_match_min_length):
            if entry.key == key:
                continue
            artifact = await self._read_or_none(entry.key)
            if artifact is not None:
                return entry.key, artifact
        return None

    async def _read_or_none(self, key: str) -> ComparisonArtifact | None:
        try:
            return await self._store.read_artifact(key)
        except ArtifactNotFoundError:
            return None
        except SinoPulseError as exc:
            logger.warning("archive_read_degraded", key=key, error=str(exc), error_type=type(exc).__name__)
            return None

    @staticmethod
    def _validate(payload: dict, locale: str) -> ComparisonArtifact:
        if not isinstance(payload, dict):
            raise MalformedArtifactError(f"Generation backend returned {type(payload).__name__}, expected object")
        try:
            artifact = ComparisonArtifact.model_validate({**payload, "provenance": Provenance.GENERATED})
        except ValidationError as exc:
            raise MalformedArtifactError(f"Generated artifact failed validation ({exc.error_count()} errors)") from exc
        if locale == "zh" and artifact.title_zh is None:
            artifact = artifact.model_copy(update={"title_zh": artifact.title})
        return artifact

    async def _write_back(self, key: str, artifact: ComparisonArtifact) -> SyncState:
        """Write artifact body, then its index entry. Never raises."""
        try:
            await self._store.write_artifact(key, artifact)
            await self._index.upsert_entry(self._index_entry(key, artifact))
        except Exception as exc:
            logger.warning("artifact_sync_failed", key=key, error=str(exc), error_type=type(exc).__name__)
            return SyncState.SYNC_FAILED

        artifact.provenance = Provenance.ARCHIVED
        logger.info("artifact_synced", key=key)
        return SyncState.SYNCED

    def _on_write_back_done(self, key: str, task: asyncio.Task[SyncState]) -> None:
        self._background.discard(task)
        self._record_sync_state(key, SyncState.SYNC_FAILED if task.cancelled() else task.result())

    def _record_sync_state(self, key: str, state: SyncState) -> None:
        self._sync_states[key] = state
        self._sync_states.move_to_end(key)
        while len(self._sync_states) > SYNC_STATE_CAPACITY:
            self._sync_states.popitem(last=False)

    @staticmethod
    def _index_entry(key: str, artifact: ComparisonArtifact) -> LibraryIndexEntry:
        # Fresh titles come from the backend; the catalog only fills gaps
        titles = repair_titles(key, artifact.title_en, artifact.title_zh, allow_override=False)
        return LibraryIndexEntry(
            key=key,
            title_en=titles.title_en,
            title_zh=titles.title_zh,
            category=artifact.category,
            summary=artifact.summary[:SUMMARY_PREVIEW_CHARS],
            last_modified=datetime.datetime.now(datetime.UTC),
        )

    def _require_archive_key(self, key: str) -> None:
        if not key.startswith(f"{self._folder}/") or not key.endswith(".json") or key == index_key(self._folder):
            raise ArtifactNotFoundError(key)
