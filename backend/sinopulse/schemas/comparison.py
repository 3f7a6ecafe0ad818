"""Pydantic schemas for comparison artifacts and the library index.

Wire format keeps the camelCase field names of the archived JSON documents
(titleEn, yAxisLabel, detailedAnalysis, ...) so artifacts written by earlier
clients stay readable. Python code uses the snake_case attribute names.
"""

import re
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from sinopulse.core.exceptions import IndexCorruptError

_YEAR_PATTERN = re.compile(r"^\d{4}$")
EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
INDEX_DOCUMENT_VERSION = 1


class Provenance(StrEnum):
    """Where the artifact handed to the caller came from."""

    GENERATED = "freshly-generated"
    ARCHIVED = "served-from-archive"


class SyncState(StrEnum):
    """Outcome of a background write-back."""

    PENDING = "pending"
    SYNCED = "synced"
    SYNC_FAILED = "sync-failed"


# ==================== ARTIFACT ====================


class ComparisonSample(BaseModel):
    """One year of the time series."""

    year: str = Field(..., description="4-digit year")
    usa: float = Field(..., allow_inf_nan=False)
    china: float = Field(..., allow_inf_nan=False)

    @field_validator("year", mode="before")
    @classmethod
    def _coerce_year(cls, value: Any) -> str:
        if isinstance(value, int) and not isinstance(value, bool):
            value = str(value)
        if not isinstance(value, str) or not _YEAR_PATTERN.match(value.strip()):
            raise ValueError(f"year must be a 4-digit string, got {value!r}")
        return value.strip()

    @field_validator("usa", "china", mode="before")
    @classmethod
    def _reject_booleans(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("sample values must be numbers")
        return value


class Source(BaseModel):
    title: str
    url: str


class ComparisonArtifact(BaseModel):
    """The cached unit of work: chart series plus narrative and citations."""

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")

    title: str = Field(..., min_length=1, description="Title in the requested locale")
    title_en: str = Field(..., alias="titleEn", min_length=1)
    title_zh: str | None = Field(None, alias="titleZh")
    category: str = Field("Custom")
    y_axis_label: str = Field(..., alias="yAxisLabel", min_length=1)
    data: list[ComparisonSample] = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)
    detailed_analysis: str = Field(..., alias="detailedAnalysis", min_length=1)
    future_outlook: str = Field(..., alias="futureOutlook", min_length=1)
    sources: list[Source] = Field(default_factory=list)
    provenance: Provenance = Provenance.GENERATED

    @field_validator("category", mode="before")
    @classmethod
    def _default_category(cls, value: Any) -> Any:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "Custom"
        return value

    @field_validator("title_zh", mode="before")
    @classmethod
    def _blank_title_zh(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _unique_years(self) -> "ComparisonArtifact":
        seen: set[str] = set()
        for sample in self.data:
            if sample.year in seen:
                raise ValueError(f"duplicate year in data: {sample.year}")
            seen.add(sample.year)
        return self

    def to_document(self) -> dict:
        """Serialize for storage. Provenance is a read-time property and is not persisted."""
        return self.model_dump(mode="json", by_alias=True, exclude={"provenance"}, exclude_none=True)


# ==================== LIBRARY INDEX ====================


class LibraryIndexEntry(BaseModel):
    """One archived artifact as listed in the shared index document."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    key: str = Field(..., min_length=1)
    title_en: str = Field("", alias="titleEn")
    title_zh: str = Field("", alias="titleZh")
    category: str = "Custom"
    summary: str | None = None
    last_modified: datetime = Field(EPOCH, alias="lastModified")

    @model_validator(mode="before")
    @classmethod
    def _accept_legacy_fields(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # Early index revisions only carried a prettified filename
        legacy_name = data.pop("displayName", None)
        if legacy_name and not (data.get("titleEn") or data.get("title_en")):
            data["titleEn"] = legacy_name
        for field_name, alias in (("title_en", "titleEn"), ("title_zh", "titleZh"), ("category", "category")):
            if data.get(alias) is None and data.get(field_name) is None:
                data.pop(alias, None)
                data.pop(field_name, None)
        if data.get("lastModified") is None and data.get("last_modified") is None:
            data.pop("lastModified", None)
            data.pop("last_modified", None)
        return data

    @field_validator("last_modified", mode="after")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def titles(self) -> set[str]:
        """Normalized non-empty titles, used for duplicate-topic collapsing."""
        return {normalize_title(t) for t in (self.title_en, self.title_zh) if t and t.strip()}


class LibraryIndex(BaseModel):
    """Ordered collection of index entries, stored as one JSON document."""

    entries: list[LibraryIndexEntry] = Field(default_factory=list)

    @classmethod
    def empty(cls) -> "LibraryIndex":
        return cls(entries=[])

    @classmethod
    def from_payload(cls, payload: Any) -> tuple["LibraryIndex", int]:
        """Parse a decoded index document leniently.

        Accepts the current ``{"version", "items"}`` envelope and the legacy bare
        list. Individual malformed entries are skipped and counted; a payload of
        the wrong shape raises IndexCorruptError. Duplicate keys keep the newest entry.

        Returns:
            (index, skipped_count)
        """
        if isinstance(payload, dict):
            items = payload.get("items", payload.get("entries"))
        else:
            items = payload
        if not isinstance(items, list):
            raise IndexCorruptError(f"Index document has unexpected shape: {type(payload).__name__}")

        skipped = 0
        by_key: dict[str, LibraryIndexEntry] = {}
        for item in items:
            try:
                entry = LibraryIndexEntry.model_validate(item)
            except ValidationError:
                skipped += 1
                continue
            existing = by_key.get(entry.key)
            if existing is not None:
                skipped += 1
                if existing.last_modified > entry.last_modified:
                    continue
                del by_key[entry.key]
            by_key[entry.key] = entry
        return cls(entries=list(by_key.values())), skipped

    def to_document(self) -> dict:
        return {
            "version": INDEX_DOCUMENT_VERSION,
            "updatedAt": datetime.now(UTC).isoformat(),
            "items": [e.model_dump(mode="json", by_alias=True, exclude_none=True) for e in self.entries],
        }

    def get(self, key: str) -> LibraryIndexEntry | None:
        for entry in self.entries:
            if entry.key == key:
                return entry
        return None


def normalize_title(title: str) -> str:
    """Case- and whitespace-insensitive form of a display title."""
    return " ".join(title.lower().split())


# ==================== API MODELS ====================


class ComparisonRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., description="Free-text metric to compare")
    language: str = Field("en", description="Locale tag, e.g. 'en' or 'zh'")
    force_refresh: bool = Field(False, alias="forceRefresh")


class ComparisonResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    key: str
    artifact: dict
    provenance: Provenance
    sync: SyncState | None = None


class LibraryResponse(BaseModel):
    language: str | None
    items: list[dict]


class ReconcileReport(BaseModel):
    """Result of an index repair pass."""

    entries_before: int
    entries_after: int
    entries_relisted: int
    skipped_entries: int
    titles_repaired: int
    written: bool


class SyncStatusResponse(BaseModel):
    key: str
    sync: SyncState
