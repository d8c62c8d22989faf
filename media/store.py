"""
media/store.py -- SQLAlchemy-backed persistence for media metadata.

Uses SQLAlchemy Core (not ORM) so the dataclasses in media/models.py remain
the authoritative domain representation.

Pattern: Repository + Data Mapper. MediaStore is the repository; the
_row_to_media function is the mapper. Route handlers never touch SQL.
Permission checks are NOT done here -- routes load an item, ask auth.access,
then call the write method.

Shares live in their own table with UNIQUE(media_id, principal_id), so
sharing the same item with the same principal twice is a no-op.

Usage:
    store = MediaStore("sqlite:///:memory:")
    media_id = store.create(MediaItem(owner_id=1, title="Beach", image_url="https://..."))
    store.share(media_id, [2, 3])
    item = store.get(media_id)
    store.close()
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    or_,
    select,
)
from sqlalchemy.engine import Engine

from media.models import MediaItem

_DEFAULT_DB_URL = "sqlite:///mediavault.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_media = Table(
    "media",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", Integer, nullable=False, index=True),
    Column("title", String(100), nullable=False),
    Column("description", String(500), nullable=False, server_default=""),
    Column("tags", Text),  # JSON array serialized as text
    Column("image_url", Text, nullable=False),
    Column("file_size", Integer, nullable=False, server_default="0"),
    Column("is_public", Integer, nullable=False, server_default="0", index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_shares = Table(
    "media_shares",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("media_id", Integer, nullable=False, index=True),
    Column("principal_id", Integer, nullable=False, index=True),
    UniqueConstraint("media_id", "principal_id", name="uq_media_share"),
)

_UPDATABLE = {"title", "description", "tags", "is_public", "image_url"}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _normalize_tags(tags: list[str]) -> list[str]:
    """Lower-case, strip, and de-duplicate tags while preserving order."""
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags:
        t = tag.strip().lower()
        if t and t not in seen:
            seen.add(t)
            result.append(t)
    return result


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class MediaStore:
    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, item: MediaItem) -> int:
        """Insert a media record (and its initial shares) and return its ID."""
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _media.insert().values(
                    owner_id=item.owner_id,
                    title=item.title,
                    description=item.description,
                    tags=json.dumps(_normalize_tags(item.tags)),
                    image_url=item.image_url,
                    file_size=item.file_size,
                    is_public=1 if item.is_public else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            media_id = result.inserted_primary_key[0]
            for principal_id in dict.fromkeys(item.shared_with):
                conn.execute(_shares.insert().values(media_id=media_id, principal_id=principal_id))
        return media_id

    def update(self, media_id: int, **fields) -> bool:
        """Update title, description, tags, is_public or image_url. Returns False if not found."""
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown media fields: {unknown!r}")
        if not fields:
            return False
        if "tags" in fields:
            fields["tags"] = json.dumps(_normalize_tags(fields["tags"]))
        if "is_public" in fields:
            fields["is_public"] = 1 if fields["is_public"] else 0
        with self.engine.begin() as conn:
            result = conn.execute(
                _media.update().where(_media.c.id == media_id).values(**fields, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def share(self, media_id: int, principal_ids: list[int]) -> list[int]:
        """Grant view access to principal_ids. Existing shares are kept; returns the full share list."""
        with self.engine.begin() as conn:
            existing = {
                r.principal_id
                for r in conn.execute(select(_shares.c.principal_id).where(_shares.c.media_id == media_id))
            }
            for principal_id in dict.fromkeys(principal_ids):
                if principal_id not in existing:
                    conn.execute(_shares.insert().values(media_id=media_id, principal_id=principal_id))
            conn.execute(_media.update().where(_media.c.id == media_id).values(updated_at=_now_iso()))
        return self._shared_with(media_id)

    def delete(self, media_id: int) -> bool:
        with self.engine.begin() as conn:
            conn.execute(_shares.delete().where(_shares.c.media_id == media_id))
            result = conn.execute(_media.delete().where(_media.c.id == media_id))
        return result.rowcount > 0

    def delete_by_owner(self, owner_id: int) -> int:
        """Remove every item owned by owner_id and every share granted to them. Returns items removed."""
        with self.engine.begin() as conn:
            ids = [r.id for r in conn.execute(select(_media.c.id).where(_media.c.owner_id == owner_id))]
            if ids:
                conn.execute(_shares.delete().where(_shares.c.media_id.in_(ids)))
                conn.execute(_media.delete().where(_media.c.id.in_(ids)))
            conn.execute(_shares.delete().where(_shares.c.principal_id == owner_id))
        return len(ids)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, media_id: int) -> MediaItem | None:
        with self.engine.connect() as conn:
            row = conn.execute(_media.select().where(_media.c.id == media_id)).fetchone()
        if row is None:
            return None
        return _row_to_media(row, self._shared_with(media_id))

    def list_public(self) -> list[MediaItem]:
        """Public items, newest first."""
        return self._list(_media.select().where(_media.c.is_public == 1))

    def list_for_principal(self, principal_id: int) -> list[MediaItem]:
        """Items the principal owns or that were shared with them, newest first."""
        shared_ids = select(_shares.c.media_id).where(_shares.c.principal_id == principal_id)
        query = _media.select().where(or_(_media.c.owner_id == principal_id, _media.c.id.in_(shared_ids)))
        return self._list(query)

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _list(self, query) -> list[MediaItem]:
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_media.c.created_at.desc(), _media.c.id.desc())).fetchall()
        return [_row_to_media(r, self._shared_with(r.id)) for r in rows]

    def _shared_with(self, media_id: int) -> list[int]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_shares.c.principal_id).where(_shares.c.media_id == media_id).order_by(_shares.c.id)
            ).fetchall()
        return [r.principal_id for r in rows]


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_media(row, shared_with: list[int]) -> MediaItem:
    return MediaItem(
        id=row.id,
        owner_id=row.owner_id,
        title=row.title,
        description=row.description or "",
        tags=json.loads(row.tags) if row.tags else [],
        image_url=row.image_url,
        file_size=row.file_size,
        is_public=bool(row.is_public),
        shared_with=shared_with,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
