"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container). Dataclasses own domain shape;
auth/store.py persists them and auth/session.py does the work. The only logic
here is field validation, which the store runs before writing a user.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

SKIN_MODEL_CLASSIC = "classic"
SKIN_MODEL_SLIM = "slim"

_MAX_NAME_LENGTH = 16

# Language codes the Minecraft launcher accepts for the preferredLanguage
# user property.
PREFERRED_LANGUAGES: frozenset[str] = frozenset(
    {
        "sq", "ar", "be", "bg", "ca", "zh", "hr", "cs", "da", "nl", "en", "et",
        "fi", "fr", "de", "el", "iw", "hi", "hu", "is", "in", "ga", "it", "ja",
        "ko", "lv", "lt", "mk", "ms", "mt", "no", "nb", "nn", "pl", "pt", "ro",
        "ru", "sr", "sk", "sl", "es", "sv", "th", "tr", "uk", "vi",
    }
)  # fmt: skip


@dataclass
class TokenPair:
    """One device's session: a stable client token and its current access token.

    client_token is the primary key and never changes once the pair exists.
    access_token is rotated on every refresh and re-authentication. Pairs are
    revoked by flipping valid to False; the flows in auth/session.py never
    delete them.
    """

    client_token: str
    access_token: str
    valid: bool = True
    user_uuid: str | None = None


@dataclass
class User:
    """A player account.

    password_salt / password_hash are raw bytes (scrypt output, see
    auth/passwords.py). token_pairs is populated by the store when the user is
    loaded and written alongside the user by create_user().
    """

    uuid: str  # canonical hyphenated form; immutable identity
    username: str
    player_name: str
    password_salt: bytes
    password_hash: bytes
    preferred_language: str = "en"
    skin_model: str = SKIN_MODEL_CLASSIC
    skin_hash: str | None = None
    cape_hash: str | None = None
    server_id: str | None = None  # legacy join-server marker
    browser_token: str | None = None
    token_pairs: list[TokenPair] = field(default_factory=list)


@dataclass
class TokenPairWithUser:
    """A token pair together with its owning user, loaded by one joined query.

    The owner's token_pairs list is not populated -- callers that need the
    whole pair set go through TokenStore.get_user_by_uuid().
    """

    pair: TokenPair
    user: User


# ---------------------------------------------------------------------------
# Field validation
# ---------------------------------------------------------------------------


def validate_player_name(player_name: str) -> None:
    """Raise ValueError unless player_name is non-blank and at most 16 characters."""
    if not player_name:
        raise ValueError("player name can't be blank")
    if len(player_name) > _MAX_NAME_LENGTH:
        raise ValueError(f"player name can't be longer than {_MAX_NAME_LENGTH} characters")


def validate_username(username: str) -> None:
    """Usernames follow the same rules as player names."""
    if not username:
        raise ValueError("username can't be blank")
    if len(username) > _MAX_NAME_LENGTH:
        raise ValueError(f"username can't be longer than {_MAX_NAME_LENGTH} characters")


def validate_password(password: str) -> None:
    if not password:
        raise ValueError("password can't be blank")


def is_valid_skin_model(model: str) -> bool:
    return model in (SKIN_MODEL_CLASSIC, SKIN_MODEL_SLIM)


def is_valid_preferred_language(language: str) -> bool:
    return language in PREFERRED_LANGUAGES
