"""
auth/store.py -- SQLAlchemy Core persistence layer for users and token pairs.

Pattern: Repository + Data Mapper. TokenStore is the repository;
_row_to_user / _row_to_pair are the mappers. auth/session.py never touches SQL
directly.

Atomicity:
  Every mutating method runs in a single engine.begin() transaction, so a
  failure part-way through rolls back and leaves no partial state visible.
  The lookup-then-write in upsert_pair() selects the row FOR UPDATE (rendered
  on PostgreSQL/MySQL; SQLite serializes writers on its database lock instead).
  rotate_access_token() is a compare-and-swap UPDATE: the WHERE clause carries
  the access token the caller presented, so of two concurrent refreshes with
  the same token exactly one matches a row.
  invalidate_owner_pairs() resolves the owner in a subquery of its UPDATE, so
  the owner it revokes is the owner at the moment of the write.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    LargeBinary,
    MetaData,
    String,
    Table,
    create_engine,
    event,
    select,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.models import (
    TokenPair,
    TokenPairWithUser,
    User,
    is_valid_preferred_language,
    is_valid_skin_model,
    validate_player_name,
    validate_username,
)

logger = logging.getLogger("lodestone.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("uuid", String(36), primary_key=True),
    Column("username", String(16), nullable=False, unique=True),
    Column("player_name", String(16), nullable=False, unique=True),
    Column("password_salt", LargeBinary, nullable=False),
    Column("password_hash", LargeBinary, nullable=False),
    Column("preferred_language", String(8), nullable=False, server_default="en"),
    Column("skin_model", String(16), nullable=False, server_default="classic"),
    Column("skin_hash", String(64), index=True),
    Column("cape_hash", String(64), index=True),
    Column("server_id", String(64)),
    Column("browser_token", String(64), index=True),
)

_token_pairs = Table(
    "token_pairs",
    _metadata,
    Column("client_token", String(255), primary_key=True),
    Column("access_token", String(64), nullable=False, index=True),
    Column("valid", Integer, nullable=False, server_default="1"),  # boolean stored as 0/1
    Column("user_uuid", String(36), ForeignKey("users.uuid"), nullable=False, index=True),
)

# Second reference to token_pairs for owner lookups inside an UPDATE of the same table.
_owner = _token_pairs.alias("owner")


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind a writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TokenStore:
    """Repository for User and TokenPair entities.

    Usage:
        store = TokenStore("sqlite:///lodestone.db")
        store.create_user(new_user("alice", "secret"))
        user = store.get_user_by_username("alice")
        store.close()

    Lookups return None on a miss; turning a miss into a protocol error is
    the session layer's job.
    """

    def __init__(self, db_url: str, timeout_seconds: float = 5.0) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            # Busy timeout: how long a connection waits on another writer's lock.
            connect_args["timeout"] = timeout_seconds
        else:
            engine_kwargs["pool_timeout"] = timeout_seconds
            engine_kwargs["pool_pre_ping"] = True
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> None:
        """Insert a user together with its token pairs in one transaction.

        Raises ValueError on invalid fields (checked before any SQL runs) and
        sqlalchemy.exc.IntegrityError if the UUID, username, player name, or a
        client token is already taken.
        """
        validate_username(user.username)
        validate_player_name(user.player_name)
        if not is_valid_preferred_language(user.preferred_language):
            raise ValueError(f"Unknown preferred language: {user.preferred_language!r}")
        if not is_valid_skin_model(user.skin_model):
            raise ValueError(f"Unknown skin model: {user.skin_model!r}")

        with self.engine.begin() as conn:
            conn.execute(
                _users.insert().values(
                    uuid=user.uuid,
                    username=user.username,
                    player_name=user.player_name,
                    password_salt=user.password_salt,
                    password_hash=user.password_hash,
                    preferred_language=user.preferred_language,
                    skin_model=user.skin_model,
                    skin_hash=user.skin_hash,
                    cape_hash=user.cape_hash,
                    server_id=user.server_id,
                    browser_token=user.browser_token,
                )
            )
            for pair in user.token_pairs:
                pair.user_uuid = user.uuid
                conn.execute(
                    _token_pairs.insert().values(
                        client_token=pair.client_token,
                        access_token=pair.access_token,
                        valid=1 if pair.valid else 0,
                        user_uuid=user.uuid,
                    )
                )

    def get_user_by_username(self, username: str) -> User | None:
        """Look up a user by exact username, token pairs loaded. None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, self._load_pairs(conn, row.uuid))

    def get_user_by_uuid(self, user_uuid: str) -> User | None:
        """Look up a user by UUID, token pairs loaded. None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.uuid == user_uuid)).fetchone()
            if row is None:
                return None
            return _row_to_user(row, self._load_pairs(conn, row.uuid))

    def _load_pairs(self, conn: Connection, user_uuid: str) -> list[TokenPair]:
        rows = conn.execute(
            _token_pairs.select().where(_token_pairs.c.user_uuid == user_uuid).order_by(_token_pairs.c.client_token)
        ).fetchall()
        return [_row_to_pair(r) for r in rows]

    # ------------------------------------------------------------------
    # Token pairs
    # ------------------------------------------------------------------

    def get_pair(self, client_token: str) -> TokenPairWithUser | None:
        """Load a token pair and its owning user with one joined query."""
        query = (
            select(_token_pairs, _users)
            .select_from(_token_pairs.join(_users, _token_pairs.c.user_uuid == _users.c.uuid))
            .where(_token_pairs.c.client_token == client_token)
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            return None
        return TokenPairWithUser(pair=_row_to_pair(row), user=_row_to_user(row, []))

    def create_pair(self, user_uuid: str, client_token: str, access_token: str) -> TokenPair:
        """Insert a brand-new valid pair for user_uuid.

        Raises sqlalchemy.exc.IntegrityError if client_token already exists --
        unlike upsert_pair(), this never takes over an existing pair.
        """
        with self.engine.begin() as conn:
            conn.execute(
                _token_pairs.insert().values(
                    client_token=client_token,
                    access_token=access_token,
                    valid=1,
                    user_uuid=user_uuid,
                )
            )
        return TokenPair(client_token=client_token, access_token=access_token, valid=True, user_uuid=user_uuid)

    def upsert_pair(self, user_uuid: str, client_token: str, access_token: str) -> TokenPair:
        """Bind client_token to user_uuid with a fresh access token, marked valid.

        Creates the pair if the client token is new. Otherwise overwrites its
        access token, sets valid, and assigns it to user_uuid (a device that
        signs in to a different account moves to that account).

        A concurrent insert of the same client token surfaces as an
        IntegrityError on our insert; the transaction is retried once, at which
        point the row exists and the update path runs.
        """
        try:
            return self._upsert_pair_once(user_uuid, client_token, access_token)
        except IntegrityError:
            logger.debug("Concurrent insert for client token; retrying as update")
            return self._upsert_pair_once(user_uuid, client_token, access_token)

    def _upsert_pair_once(self, user_uuid: str, client_token: str, access_token: str) -> TokenPair:
        with self.engine.begin() as conn:
            existing = conn.execute(
                select(_token_pairs.c.client_token).where(_token_pairs.c.client_token == client_token).with_for_update()
            ).fetchone()
            if existing is None:
                conn.execute(
                    _token_pairs.insert().values(
                        client_token=client_token,
                        access_token=access_token,
                        valid=1,
                        user_uuid=user_uuid,
                    )
                )
            else:
                conn.execute(
                    _token_pairs.update()
                    .where(_token_pairs.c.client_token == client_token)
                    .values(access_token=access_token, valid=1, user_uuid=user_uuid)
                )
        return TokenPair(client_token=client_token, access_token=access_token, valid=True, user_uuid=user_uuid)

    def rotate_access_token(self, client_token: str, expected_access_token: str, new_access_token: str) -> bool:
        """Replace the access token only if it still equals expected_access_token.

        Also marks the pair valid. Returns True if the swap happened, False if
        the pair is missing or its access token has already changed.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _token_pairs.update()
                .where(
                    (_token_pairs.c.client_token == client_token)
                    & (_token_pairs.c.access_token == expected_access_token)
                )
                .values(access_token=new_access_token, valid=1)
            )
        return result.rowcount == 1

    def invalidate_user_pairs(self, user_uuid: str) -> int:
        """Mark every token pair owned by user_uuid invalid. Returns rows touched."""
        with self.engine.begin() as conn:
            result = conn.execute(_token_pairs.update().where(_token_pairs.c.user_uuid == user_uuid).values(valid=0))
        return result.rowcount

    def invalidate_owner_pairs(self, client_token: str) -> int:
        """Mark every pair of the user who owns client_token invalid. Returns rows touched.

        One UPDATE with the owner resolved in a subquery, so the owner is read
        and revoked atomically: a concurrent upsert_pair() that moves the
        client token to another account cannot slip in between. Returns 0 for
        an unknown client token.
        """
        owner = select(_owner.c.user_uuid).where(_owner.c.client_token == client_token).scalar_subquery()
        with self.engine.begin() as conn:
            result = conn.execute(_token_pairs.update().where(_token_pairs.c.user_uuid == owner).values(valid=0))
        return result.rowcount

    def invalidate_pair(self, client_token: str) -> bool:
        """Mark a single pair invalid. Returns False if no such client token."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _token_pairs.update().where(_token_pairs.c.client_token == client_token).values(valid=0)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row, token_pairs: list[TokenPair]) -> User:
    return User(
        uuid=row.uuid,
        username=row.username,
        player_name=row.player_name,
        password_salt=bytes(row.password_salt),
        password_hash=bytes(row.password_hash),
        preferred_language=row.preferred_language,
        skin_model=row.skin_model,
        skin_hash=row.skin_hash,
        cape_hash=row.cape_hash,
        server_id=row.server_id,
        browser_token=row.browser_token,
        token_pairs=token_pairs,
    )


def _row_to_pair(row) -> TokenPair:
    return TokenPair(
        client_token=row.client_token,
        access_token=row.access_token,
        valid=bool(row.valid),
        user_uuid=row.user_uuid,
    )
