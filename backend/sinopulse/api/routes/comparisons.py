"""Comparison API routes: fetch-or-generate, archive listing, direct key lookup, admin edits."""

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request

from sinopulse.core.auth import AuthenticatedUser, Principal, get_principal, require_admin
from sinopulse.core.exceptions import (
    ArtifactNotFoundError,
    GenerationError,
    MalformedArtifactError,
    PermissionDeniedError,
    TransientStoreError,
)
from sinopulse.domain.titles import localized_category
from sinopulse.schemas.comparison import (
    ComparisonRequest,
    ComparisonResponse,
    LibraryResponse,
    ReconcileReport,
    SyncStatusResponse,
)
from sinopulse.services.comparison_service import ComparisonService

router = APIRouter()


def get_comparison_service(request: Request) -> ComparisonService:
    """Dependency that provides the ComparisonService built in the app lifespan.

    Override this dependency in tests via app.dependency_overrides.
    """
    return request.app.state.comparison_service


@router.post("", response_model=ComparisonResponse)
async def fetch_comparison(
    body: ComparisonRequest,
    principal: Principal = Depends(get_principal),
    service: ComparisonService = Depends(get_comparison_service),
):
    """Return the archived comparison for a query, generating it on a miss.

    The response is sent as soon as the artifact is available; archiving a
    freshly generated artifact continues in the background (``sync: pending``).
    """
    if not body.query.strip():
        raise HTTPException(status_code=422, detail="Query must not be empty")

    try:
        result = await service.fetch_comparison(
            body.query,
            body.language,
            force_refresh=body.force_refresh,
            can_generate=principal.can_generate,
        )
    except PermissionDeniedError as exc:
        # Distinct from other failures: the user can fix this by signing in
        raise HTTPException(status_code=403, detail={"code": "permission_denied", "message": str(exc)})
    except MalformedArtifactError as exc:
        raise HTTPException(status_code=502, detail={"code": "malformed_artifact", "message": str(exc)})
    except GenerationError as exc:
        raise HTTPException(status_code=502, detail={"code": exc.code, "message": str(exc)})

    return ComparisonResponse(
        key=result.key,
        artifact=result.artifact.to_document(),
        provenance=result.artifact.provenance,
        sync=result.sync_state,
    )


@router.get("/library", response_model=LibraryResponse)
async def list_library(
    language: str | None = Query(None),
    service: ComparisonService = Depends(get_comparison_service),
):
    entries = await service.list_archived(language)
    return LibraryResponse(
        language=language,
        items=[
            {
                **e.model_dump(mode="json", by_alias=True, exclude_none=True),
                "categoryLabel": localized_category(e.category, language),
            }
            for e in entries
        ],
    )


@router.post("/library/reconcile", response_model=ReconcileReport)
async def reconcile_library(
    admin: AuthenticatedUser = Depends(require_admin),
    service: ComparisonService = Depends(get_comparison_service),
):
    """Repair the library index (dedupe, title repair, rebuild when missing)."""
    try:
        return await service.reconcile_index()
    except TransientStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc))


@router.get("/by-key")
async def fetch_by_key(
    key: str = Query(..., min_length=1),
    service: ComparisonService = Depends(get_comparison_service),
):
    try:
        artifact = await service.fetch_by_key(key)
    except ArtifactNotFoundError:
        raise HTTPException(status_code=404, detail="Comparison not found")
    except TransientStoreError:
        raise HTTPException(status_code=503, detail="Archive temporarily unavailable")
    except MalformedArtifactError:
        raise HTTPException(status_code=502, detail="Archived comparison is unreadable")

    return ComparisonResponse(key=key, artifact=artifact.to_document(), provenance=artifact.provenance)


@router.delete("/by-key")
async def delete_by_key(
    key: str = Query(..., min_length=1),
    admin: AuthenticatedUser = Depends(require_admin),
    service: ComparisonService = Depends(get_comparison_service),
):
    try:
        await service.delete_archived(key)
    except ArtifactNotFoundError:
        raise HTTPException(status_code=404, detail="Comparison not found")
    except TransientStoreError:
        raise HTTPException(status_code=503, detail="Archive temporarily unavailable")
    return {"deleted": key}


@router.put("/by-key")
async def update_by_key(
    document: dict = Body(...),
    key: str = Query(..., min_length=1),
    admin: AuthenticatedUser = Depends(require_admin),
    service: ComparisonService = Depends(get_comparison_service),
):
    """Replace an archived comparison with an edited document."""
    try:
        artifact = await service.update_archived(key, document)
    except ArtifactNotFoundError:
        raise HTTPException(status_code=404, detail="Comparison not found")
    except MalformedArtifactError as exc:
        raise HTTPException(status_code=422, detail={"code": "malformed_artifact", "message": str(exc)})
    except TransientStoreError:
        raise HTTPException(status_code=503, detail="Archive temporarily unavailable")

    return ComparisonResponse(key=key, artifact=artifact.to_document(), provenance=artifact.provenance)


@router.get("/sync", response_model=SyncStatusResponse)
async def sync_status(
    key: str = Query(..., min_length=1),
    service: ComparisonService = Depends(get_comparison_service),
):
    """Outcome of the background write-back for a freshly generated comparison.

    ``sync-failed`` means the comparison was not archived; request it again
    with ``forceRefresh`` to regenerate and retry the write.
    """
    state = service.sync_status(key)
    if state is None:
        raise HTTPException(status_code=404, detail="No write-back recorded for this key")
    return SyncStatusResponse(key=key, sync=state)
