"""
auth/session.py -- Yggdrasil session protocol handlers.

SessionService implements the five state transitions of the session protocol
over TokenStore and the credential verifier:

  authenticate  credentials -> new access token (new or reused client token)
  refresh       (access, client) -> rotated access token, same client token
  validate      (access, client) -> ok / ValidationFailure, read-only
  signout       credentials -> every pair of the user revoked
  invalidate    client token -> pairs revoked per Settings.invalidate_scope

Rejections are raised as auth.errors.SessionError subclasses. Store errors and
CodecError propagate untouched; every store mutation is a single transaction,
so an exception never leaves a half-applied change behind.

Result objects keep optional blocks as None. The transport serializes them by
omission, so "absent" never turns into a JSON null.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, field

from auth.context import AppContext
from auth.errors import CredentialMismatch, TokenMismatch, TokenNotFound, ValidationFailure
from auth.ids import uuid_to_id
from auth.models import User
from auth.passwords import authenticate_user, generate_token

logger = logging.getLogger("lodestone.auth")

PREFERRED_LANGUAGE_PROPERTY = "preferredLanguage"


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


@dataclass
class Agent:
    """The launcher's self-description, e.g. Agent("Minecraft", 1)."""

    name: str
    version: int = 1


@dataclass
class Profile:
    id: str  # compact 32-char form
    name: str


@dataclass
class UserProperty:
    name: str
    value: str


@dataclass
class UserInfo:
    id: str  # compact 32-char form
    properties: list[UserProperty] = field(default_factory=list)


@dataclass
class SessionTokens:
    """Result of authenticate and refresh.

    selected_profile / available_profiles are always set by refresh and only
    set by authenticate when the client sent an agent. user is set only when
    the client asked for it.
    """

    access_token: str
    client_token: str
    selected_profile: Profile | None = None
    available_profiles: list[Profile] | None = None
    user: UserInfo | None = None


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class SessionService:
    """The session protocol over one AppContext.

    Usage:
        service = SessionService(ctx)
        tokens = service.authenticate("alice", "secret", agent=Agent("Minecraft"))
        service.validate(tokens.access_token, tokens.client_token)
    """

    def __init__(self, ctx: AppContext) -> None:
        self.ctx = ctx
        self.store = ctx.store

    def authenticate(
        self,
        username: str,
        password: str,
        client_token: str | None = None,
        agent: Agent | None = None,
        request_user: bool = False,
    ) -> SessionTokens:
        """Exchange credentials for a token pair.

        Without a client token a new pair is created and the generated client
        token is returned. With one, the pair under that client token is
        reused (its access token overwritten and marked valid) or created if
        it does not exist yet. An empty string counts as no client token.
        """
        user = authenticate_user(self.store, username, password)
        if user is None:
            logger.info("Authentication rejected for %r", username)
            raise CredentialMismatch()

        # Response blocks are built before any write so a corrupt identity
        # record fails the request without touching the token pairs.
        profile = _profile(user) if agent is not None else None
        user_info = _user_info(user) if request_user else None

        access_token = generate_token()
        if not client_token:
            client_token = generate_token()
            self.store.create_pair(user.uuid, client_token, access_token)
        else:
            self.store.upsert_pair(user.uuid, client_token, access_token)
        logger.info("Authenticated %r", username)

        return SessionTokens(
            access_token=access_token,
            client_token=client_token,
            selected_profile=profile,
            available_profiles=[profile] if profile is not None else None,
            user=user_info,
        )

    def refresh(self, access_token: str, client_token: str, request_user: bool = False) -> SessionTokens:
        """Rotate the access token of an existing pair.

        Raises TokenNotFound if the client token is unknown and TokenMismatch
        if the access token is not the pair's current one -- including when a
        concurrent refresh rotated it between our read and our write.
        """
        found = self.store.get_pair(client_token)
        if found is None:
            raise TokenNotFound()
        if not _tokens_match(found.pair.access_token, access_token):
            raise TokenMismatch()

        profile = _profile(found.user)
        user_info = _user_info(found.user) if request_user else None

        new_access_token = generate_token()
        if not self.store.rotate_access_token(client_token, access_token, new_access_token):
            raise TokenMismatch()

        return SessionTokens(
            access_token=new_access_token,
            client_token=found.pair.client_token,
            selected_profile=profile,
            available_profiles=[profile],
            user=user_info,
        )

    def validate(self, access_token: str, client_token: str) -> None:
        """Return normally iff the pair exists, is valid, and access_token matches."""
        found = self.store.get_pair(client_token)
        if found is None or not found.pair.valid:
            raise ValidationFailure()
        if not _tokens_match(found.pair.access_token, access_token):
            raise ValidationFailure()

    def signout(self, username: str, password: str) -> None:
        """Revoke every token pair of the user, after checking credentials."""
        user = authenticate_user(self.store, username, password)
        if user is None:
            logger.info("Signout rejected for %r", username)
            raise CredentialMismatch()
        count = self.store.invalidate_user_pairs(user.uuid)
        logger.info("Signed out %r (%d token pairs revoked)", username, count)

    def invalidate(self, access_token: str, client_token: str) -> None:
        """Revoke the session behind client_token.

        With invalidate_scope="user" (the default) every pair of the owning
        user is revoked, not just the presented one; "pair" revokes only the
        presented pair. The access token is accepted but not checked, and an
        unknown client token is a no-op.
        """
        # One UPDATE per branch; the owner is resolved inside it.
        if self.ctx.settings.invalidate_scope == "pair":
            count = 1 if self.store.invalidate_pair(client_token) else 0
        else:
            count = self.store.invalidate_owner_pairs(client_token)
        if count == 0:
            logger.debug("Invalidate for unknown client token ignored")
        else:
            logger.info("Invalidated %d token pairs (scope=%s)", count, self.ctx.settings.invalidate_scope)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _tokens_match(stored: str, presented: str) -> bool:
    return hmac.compare_digest(stored.encode("utf-8"), presented.encode("utf-8"))


def _profile(user: User) -> Profile:
    return Profile(id=uuid_to_id(user.uuid), name=user.player_name)


def _user_info(user: User) -> UserInfo:
    return UserInfo(
        id=uuid_to_id(user.uuid),
        properties=[UserProperty(name=PREFERRED_LANGUAGE_PROPERTY, value=user.preferred_language)],
    )
