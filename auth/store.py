"""
auth/store.py -- SQLAlchemy Core persistence layer for principals.

Pattern: Repository + Data Mapper (same as media/store.py).
PrincipalStore is the repository; _row_to_principal is the mapper.
Flow and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  email is UNIQUE at the database level, so two concurrent registrations or
  OAuth first-logins for the same address cannot both succeed -- the loser
  gets an IntegrityError. external_id is UNIQUE too; SQLite treats NULLs as
  distinct, so any number of password-only principals may leave it unset.

  link_external_id() only writes when the column is still NULL. A linked
  Google identity is never overwritten.

Layer rule: no imports from api/ or media/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import Principal

_DEFAULT_DB_URL = "sqlite:///mediavault.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_principals = Table(
    "principals",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("email", String(255), nullable=False, unique=True),
    Column("credential_hash", Text),  # NULL for OAuth-only principals
    Column("role", String(20), nullable=False, server_default="user"),
    Column("active", Integer, nullable=False, server_default="1"),
    Column("email_verified", Integer, nullable=False, server_default="0"),
    Column("external_id", String(255), unique=True),  # Google subject
    Column("avatar", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Fields update() accepts. Anything else is a programming error.
_UPDATABLE = {"name", "email", "credential_hash", "role", "active", "email_verified", "avatar"}
_BOOL_FIELDS = {"active", "email_verified"}


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PrincipalStore:
    """Repository for Principal entities.

    Usage:
        store = PrincipalStore("sqlite:///:memory:")
        pid = store.create(Principal(name="Ann", email="ann@x.com", credential_hash=hash_password("secret")))
        ann = store.get_by_email("ann@x.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_principals)).scalar()
        return (result or 0) > 0

    def create(self, principal: Principal) -> int:
        """Insert a new principal and return its assigned ID.

        Raises sqlalchemy.exc.IntegrityError if the email (or external_id) is
        already taken. Callers treat that as a conflict or, for OAuth, as a
        signal that a concurrent request created the record first.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _principals.insert().values(
                    name=principal.name,
                    email=principal.email.strip().lower(),
                    credential_hash=principal.credential_hash,
                    role=principal.role,
                    active=1 if principal.active else 0,
                    email_verified=1 if principal.email_verified else 0,
                    external_id=principal.external_id,
                    avatar=principal.avatar,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, principal_id: int) -> Principal | None:
        with self.engine.connect() as conn:
            row = conn.execute(_principals.select().where(_principals.c.id == principal_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_by_email(self, email: str) -> Principal | None:
        """Look up a principal by email. Matching is case-insensitive (emails are stored lower-cased)."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _principals.select().where(_principals.c.email == email.strip().lower())
            ).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_by_external_id(self, external_id: str) -> Principal | None:
        with self.engine.connect() as conn:
            row = conn.execute(_principals.select().where(_principals.c.external_id == external_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def link_external_id(self, principal_id: int, external_id: str) -> bool:
        """Set external_id if it is still unset. Returns True if the link was written."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _principals.update()
                .where((_principals.c.id == principal_id) & (_principals.c.external_id.is_(None)))
                .values(external_id=external_id, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def update(self, principal_id: int, **fields) -> bool:
        """Update mutable fields on an existing principal.

        Accepted fields: name, email, credential_hash, role, active,
        email_verified, avatar. Booleans are converted to int for SQLite.
        Returns True if a row was updated, False if principal_id was not found.
        """
        unknown = set(fields) - _UPDATABLE
        if unknown:
            raise ValueError(f"Unknown principal fields: {unknown!r}")
        if not fields:
            return False
        for key in _BOOL_FIELDS & fields.keys():
            fields[key] = 1 if fields[key] else 0
        if "email" in fields:
            fields["email"] = fields["email"].strip().lower()
        with self.engine.connect() as conn:
            result = conn.execute(
                _principals.update().where(_principals.c.id == principal_id).values(**fields, updated_at=_now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def list_principals(self, role: str | None = None, active: bool | None = None) -> list[Principal]:
        """Return principals ordered by creation, optionally filtered. Admin-only operation."""
        query = _principals.select()
        if role is not None:
            query = query.where(_principals.c.role == role)
        if active is not None:
            query = query.where(_principals.c.active == (1 if active else 0))
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_principals.c.id)).fetchall()
        return [_row_to_principal(r) for r in rows]

    def count_active_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_principals)
                .where((_principals.c.role == "admin") & (_principals.c.active == 1))
            ).scalar()
        return result or 0

    def delete(self, principal_id: int) -> bool:
        """Permanently delete a principal. Returns True if deleted, False if not found.

        Callers must check last-admin invariants before calling this method.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_principals.delete().where(_principals.c.id == principal_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        name=row.name,
        email=row.email,
        credential_hash=row.credential_hash,
        role=row.role,
        active=bool(row.active),
        email_verified=bool(row.email_verified),
        external_id=row.external_id,
        avatar=row.avatar,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
