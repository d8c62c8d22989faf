"""
api/routes/v1/media.py -- Media metadata REST endpoints.

Routes:
  POST   /api/v1/media              -- create an item owned by the caller (requires auth)
  GET    /api/v1/media/public       -- public items (no auth)
  GET    /api/v1/media/mine         -- caller's own items plus items shared with them
  GET    /api/v1/media/{id}         -- one item; anonymous callers see public items only
  PUT    /api/v1/media/{id}         -- update (owner or admin)
  DELETE /api/v1/media/{id}         -- delete (owner or admin)
  PUT    /api/v1/media/{id}/share   -- grant view access to other users (owner or admin)

Every visibility and mutation decision goes through auth.access. Handlers
load the item, ask, and only then write. shared_with is listed only to
callers who may mutate the item.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import MediaCreate, MediaResponse, MediaUpdate, MessageResponse, ShareRequest
from auth.access import require_mutate, require_view
from auth.dependencies import get_current_principal, try_get_current_principal
from auth.errors import NotFound, ValidationFailed
from auth.models import Principal
from media.models import MediaItem
from media.store import MediaStore

logger = logging.getLogger("mediavault.api.media")

# Auth policy:
# - GET /media/public: public
# - GET /media/{id}:   optional auth; auth.access.can_view decides
# - everything else:   requires auth (get_current_principal) + auth.access checks
router = APIRouter()


def _store(request: Request) -> MediaStore:
    return request.app.state.media


def _get_or_404(store: MediaStore, media_id: int) -> MediaItem:
    item = store.get(media_id)
    if item is None:
        raise NotFound("Media not found.")
    return item


@router.post("/media", response_model=MediaResponse, status_code=201)
def create_media(
    request: Request,
    body: MediaCreate,
    principal: Principal = Depends(get_current_principal),
) -> MediaResponse:
    store = _store(request)
    media_id = store.create(
        MediaItem(
            owner_id=principal.id,
            title=body.title,
            description=body.description,
            tags=body.tags,
            image_url=body.image_url,
            file_size=body.file_size,
            is_public=body.is_public,
        )
    )
    logger.info("Principal %d created media %d", principal.id, media_id)
    return MediaResponse.from_item(_get_or_404(store, media_id), principal)


@router.get("/media/public", response_model=list[MediaResponse])
def list_public_media(request: Request) -> list[MediaResponse]:
    return [MediaResponse.from_item(i) for i in _store(request).list_public()]


@router.get("/media/mine", response_model=list[MediaResponse])
def list_my_media(
    request: Request,
    principal: Principal = Depends(get_current_principal),
) -> list[MediaResponse]:
    return [MediaResponse.from_item(i, principal) for i in _store(request).list_for_principal(principal.id)]


@router.get("/media/{media_id}", response_model=MediaResponse)
def get_media(
    request: Request,
    media_id: int,
    principal: Principal | None = Depends(try_get_current_principal),
) -> MediaResponse:
    item = _get_or_404(_store(request), media_id)
    require_view(principal, item.access)
    return MediaResponse.from_item(item, principal)


@router.put("/media/{media_id}", response_model=MediaResponse)
def update_media(
    request: Request,
    media_id: int,
    body: MediaUpdate,
    principal: Principal = Depends(get_current_principal),
) -> MediaResponse:
    store = _store(request)
    item = _get_or_404(store, media_id)
    require_mutate(principal, item.access)

    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise ValidationFailed("No fields to update.", code="no_changes")
    store.update(media_id, **updates)
    return MediaResponse.from_item(_get_or_404(store, media_id), principal)


@router.delete("/media/{media_id}", response_model=MessageResponse)
def delete_media(
    request: Request,
    media_id: int,
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    store = _store(request)
    item = _get_or_404(store, media_id)
    require_mutate(principal, item.access)
    store.delete(media_id)
    logger.info("Principal %d deleted media %d", principal.id, media_id)
    return MessageResponse(message="Media deleted successfully.")


@router.put("/media/{media_id}/share", response_model=MediaResponse)
def share_media(
    request: Request,
    media_id: int,
    body: ShareRequest,
    principal: Principal = Depends(get_current_principal),
) -> MediaResponse:
    """Grant view access. Recipients must be existing, active users other than the owner."""
    store = _store(request)
    item = _get_or_404(store, media_id)
    require_mutate(principal, item.access)

    principals = request.app.state.principals
    recipients = [uid for uid in body.user_ids if uid != item.owner_id]
    unknown = [uid for uid in recipients if (p := principals.get_by_id(uid)) is None or not p.active]
    if unknown:
        raise ValidationFailed(
            "Some users were not found or are inactive.",
            code="unknown_recipients",
            detail=",".join(str(uid) for uid in unknown),
        )
    if recipients:
        store.share(media_id, recipients)
    return MediaResponse.from_item(_get_or_404(store, media_id), principal)
