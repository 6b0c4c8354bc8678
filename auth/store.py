"""
auth/store.py -- SQLAlchemy Core persistence layer for identities.

Pattern: Repository + Data Mapper. IdentityStore is the repository;
_row_to_identity is the mapper. Route and dependency code never touches SQL
directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  UNIQUE(email) and UNIQUE(username) are the actual enforcement of account
  uniqueness. Handlers may pre-check availability for a friendlier message,
  but two concurrent registrations can both pass a pre-check; the second
  INSERT then fails here and is translated into Conflict(field=...).

  Reset tokens are stored as SHA-256 digests. consume_reset_token() is a
  conditional single-row UPDATE, so a token can be redeemed at most once
  even when two requests race.

DB path: auth/inkpost_auth.db by default.

Layer rule: no imports from api/, web/ or content/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import BigInteger, Column, MetaData, String, Table, Text, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Identity, Role, Status
from core.errors import Conflict

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).parent / 'inkpost_auth.db'}"

# Columns an update_identity() caller may write. Anything else is a bug.
_MUTABLE_FIELDS = {
    "email",
    "username",
    "name",
    "image",
    "role",
    "status",
    "hashed_password",
    "credentials_changed_at",
}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_identities = Table(
    "identities",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("name", String(100)),
    Column("image", Text),
    Column("hashed_password", Text),  # NULL for federated-only identities
    Column("role", String(16), nullable=False, server_default="USER"),
    Column("status", String(16), nullable=False, server_default="ACTIVE"),
    Column("oauth_provider", String(30)),
    Column("oauth_subject", Text),
    Column("reset_token_hash", String(64), unique=True),
    Column("reset_token_expiry", String(32)),
    Column("credentials_changed_at", BigInteger),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _conflicting_field(exc: IntegrityError) -> Optional[str]:
    """Name the unique column an IntegrityError refers to, if recognisable.

    SQLite reports "UNIQUE constraint failed: identities.email"; PostgreSQL
    reports the constraint name, which contains the column name.
    """
    message = str(exc.orig).lower()
    for field in ("email", "username", "reset_token_hash"):
        if field in message:
            return field
    return None


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class IdentityStore:
    """Repository for Identity entities.

    Usage:
        store = IdentityStore()
        identity_id = store.create_identity(Identity(email="a@b.io", username="ada", hashed_password=h))
        identity = store.get_by_email("a@b.io")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_identity(self, identity: Identity) -> str:
        """Insert a new identity and return its id.

        Raises Conflict(field="email"|"username") when a unique column is
        already taken.
        """
        identity_id = identity.id or uuid.uuid4().hex
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _identities.insert().values(
                        id=identity_id,
                        email=identity.email.strip().lower(),
                        username=identity.username,
                        name=identity.name,
                        image=identity.image,
                        hashed_password=identity.hashed_password,
                        role=Role(identity.role).value,
                        status=Status(identity.status).value,
                        oauth_provider=identity.oauth_provider,
                        oauth_subject=identity.oauth_subject,
                        credentials_changed_at=identity.credentials_changed_at,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            field = _conflicting_field(exc)
            raise Conflict(_conflict_message(field), field=field) from exc
        return identity_id

    def update_identity(self, identity_id: str, **fields) -> bool:
        """Update mutable fields on an existing identity.

        role and status accept Role / Status members. Returns True if a row
        was updated, False if identity_id was not found. Raises Conflict when
        a new email or username is already taken.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown identity fields: {unknown!r}")
        if "email" in fields:
            fields["email"] = fields["email"].strip().lower()
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        if "status" in fields:
            fields["status"] = Status(fields["status"]).value
        fields["updated_at"] = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(_identities.update().where(_identities.c.id == identity_id).values(**fields))
                conn.commit()
        except IntegrityError as exc:
            field = _conflicting_field(exc)
            raise Conflict(_conflict_message(field), field=field) from exc
        return result.rowcount > 0

    def delete_identity(self, identity_id: str) -> bool:
        """Permanently delete an identity. Returns True if deleted.

        Callers check the self-action and last-admin rules before calling.
        """
        with self.engine.connect() as conn:
            result = conn.execute(_identities.delete().where(_identities.c.id == identity_id))
            conn.commit()
        return result.rowcount > 0

    def link_oauth(self, identity_id: str, provider: str, subject: str) -> None:
        """Associate a federated identity with an existing account."""
        with self.engine.connect() as conn:
            conn.execute(
                _identities.update()
                .where(_identities.c.id == identity_id)
                .values(oauth_provider=provider, oauth_subject=subject, updated_at=_now_iso())
            )
            conn.commit()

    def update_last_login(self, identity_id: str) -> None:
        """Stamp the current UTC timestamp as last_login."""
        with self.engine.connect() as conn:
            conn.execute(_identities.update().where(_identities.c.id == identity_id).values(last_login=_now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Reset tokens
    # ------------------------------------------------------------------

    def set_reset_token(self, identity_id: str, token_hash: str, expires_at: str) -> None:
        """Store a reset token digest, replacing any outstanding one."""
        with self.engine.connect() as conn:
            conn.execute(
                _identities.update()
                .where(_identities.c.id == identity_id)
                .values(reset_token_hash=token_hash, reset_token_expiry=expires_at)
            )
            conn.commit()

    def consume_reset_token(self, identity_id: str, token_hash: str, hashed_password: str, changed_at: int) -> bool:
        """Set a new password and clear the reset token in one statement.

        The WHERE clause includes the token digest, so only the first of two
        concurrent redemptions matches a row. Returns True if this call won.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _identities.update()
                .where((_identities.c.id == identity_id) & (_identities.c.reset_token_hash == token_hash))
                .values(
                    hashed_password=hashed_password,
                    reset_token_hash=None,
                    reset_token_expiry=None,
                    credentials_changed_at=changed_at,
                    updated_at=now,
                )
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_identities(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_identities)).scalar()
        return (result or 0) > 0

    def get_by_id(self, identity_id: str) -> Identity | None:
        return self._get_one(_identities.c.id == identity_id)

    def get_by_email(self, email: str) -> Identity | None:
        """Look up an identity by email (exact match after lowercasing)."""
        return self._get_one(_identities.c.email == email.strip().lower())

    def get_by_username(self, username: str) -> Identity | None:
        return self._get_one(_identities.c.username == username)

    def get_by_reset_token_hash(self, token_hash: str) -> Identity | None:
        return self._get_one(_identities.c.reset_token_hash == token_hash)

    def get_by_oauth(self, provider: str, subject: str) -> Identity | None:
        return self._get_one((_identities.c.oauth_provider == provider) & (_identities.c.oauth_subject == subject))

    def list_identities(
        self,
        *,
        page: int = 1,
        limit: int = 20,
        search: Optional[str] = None,
        role: Optional[Role] = None,
        status: Optional[Status] = None,
    ) -> tuple[list[Identity], int]:
        """Return one page of identities (newest first) and the total match count."""
        conditions = []
        if search:
            pattern = f"%{search.strip().lower()}%"
            conditions.append(
                or_(
                    func.lower(_identities.c.email).like(pattern),
                    func.lower(_identities.c.username).like(pattern),
                    func.lower(_identities.c.name).like(pattern),
                )
            )
        if role is not None:
            conditions.append(_identities.c.role == Role(role).value)
        if status is not None:
            conditions.append(_identities.c.status == Status(status).value)

        query = _identities.select().where(*conditions) if conditions else _identities.select()
        count_query = select(func.count()).select_from(_identities)
        if conditions:
            count_query = count_query.where(*conditions)

        offset = (max(page, 1) - 1) * limit
        with self.engine.connect() as conn:
            rows = conn.execute(
                query.order_by(_identities.c.created_at.desc(), _identities.c.id).limit(limit).offset(offset)
            ).fetchall()
            total = conn.execute(count_query).scalar() or 0
        return [_row_to_identity(r) for r in rows], total

    def count_identities(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_identities)).scalar() or 0

    def count_active_admins(self) -> int:
        """Return the number of ACTIVE identities holding the ADMIN role."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_identities)
                .where((_identities.c.role == Role.ADMIN.value) & (_identities.c.status == Status.ACTIVE.value))
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()

    def _get_one(self, condition) -> Identity | None:
        with self.engine.connect() as conn:
            row = conn.execute(_identities.select().where(condition)).fetchone()
        return _row_to_identity(row) if row is not None else None


def _conflict_message(field: Optional[str]) -> str:
    if field == "email":
        return "A user with this email already exists."
    if field == "username":
        return "This username is already taken."
    return "Identity already exists."


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_identity(row) -> Identity:
    return Identity(
        id=row.id,
        email=row.email,
        username=row.username,
        name=row.name,
        image=row.image,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        status=Status(row.status),
        oauth_provider=row.oauth_provider,
        oauth_subject=row.oauth_subject,
        reset_token_hash=row.reset_token_hash,
        reset_token_expiry=row.reset_token_expiry,
        credentials_changed_at=row.credentials_changed_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )
