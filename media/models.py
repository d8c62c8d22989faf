"""
media/models.py -- Domain dataclasses for media metadata.

Pure data containers. MediaStore does the persistence; auth.access decides
who may see or change an item using the ResourceAccess view below.

Only metadata lives here. The image bytes are held by an external blob store
and referenced by image_url.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from auth.models import ResourceAccess


@dataclass
class MediaItem:
    """A gallery item owned by one principal.

    shared_with lists the principal ids granted view access. Sharing never
    grants edit rights.

    id is None before the record is written to the database.
    """

    owner_id: int
    title: str
    image_url: str
    description: str = ""
    tags: list[str] = field(default_factory=list)
    file_size: int = 0  # bytes, as reported by the uploader
    is_public: bool = False
    shared_with: list[int] = field(default_factory=list)
    id: int | None = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""

    @property
    def access(self) -> ResourceAccess:
        return ResourceAccess(
            owner_id=self.owner_id,
            is_public=self.is_public,
            shared_with=frozenset(self.shared_with),
        )
