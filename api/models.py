"""
API request and response models for the Lodestone Yggdrasil endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/session.py, which own the
internal result shape. Route handlers map between the two.

Wire names are camelCase (Yggdrasil) for the session endpoints and PascalCase
for the server info document; the alias generators below produce them from
the snake_case field names.

Optional response blocks are dumped with exclude_none=True -- clients expect
an absent key, not a null.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel, to_pascal

from auth.session import Agent, Profile, SessionTokens, UserInfo

# ---------------------------------------------------------------------------
# Base classes
# ---------------------------------------------------------------------------


class _YggdrasilRequest(BaseModel):
    """Request bodies accept camelCase keys and ignore unknown ones."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class _YggdrasilResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class AgentModel(_YggdrasilRequest):
    name: str = "Minecraft"
    version: int = 1

    def to_agent(self) -> Agent:
        return Agent(name=self.name, version=self.version)


class AuthenticateRequest(_YggdrasilRequest):
    """Request body for POST /auth/authenticate."""

    username: str = Field(max_length=255)
    password: str = Field(max_length=1024)
    client_token: Optional[str] = None
    agent: Optional[AgentModel] = None
    request_user: bool = False


class RefreshRequest(_YggdrasilRequest):
    """Request body for POST /auth/refresh.

    selectedProfile is part of the Yggdrasil request schema but is ignored:
    every account has exactly one profile.
    """

    access_token: str = ""
    client_token: str = ""
    request_user: bool = False


class TokenPairRequest(_YggdrasilRequest):
    """Request body for POST /auth/validate and POST /auth/invalidate.

    Token fields carry no length limit and default to "": a missing or
    malformed token is a lookup miss answered with the empty-bodied
    rejection, never a 400.
    """

    access_token: str = ""
    client_token: str = ""


class SignoutRequest(_YggdrasilRequest):
    """Request body for POST /auth/signout."""

    username: str = Field(max_length=255)
    password: str = Field(max_length=1024)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ProfileModel(_YggdrasilResponse):
    id: str
    name: str

    @classmethod
    def from_profile(cls, profile: Profile) -> "ProfileModel":
        return cls(id=profile.id, name=profile.name)


class UserPropertyModel(_YggdrasilResponse):
    name: str
    value: str


class UserModel(_YggdrasilResponse):
    id: str
    properties: list[UserPropertyModel]

    @classmethod
    def from_user_info(cls, info: UserInfo) -> "UserModel":
        return cls(
            id=info.id,
            properties=[UserPropertyModel(name=p.name, value=p.value) for p in info.properties],
        )


class SessionResponse(_YggdrasilResponse):
    """Response for POST /auth/authenticate and POST /auth/refresh."""

    access_token: str
    client_token: str
    selected_profile: Optional[ProfileModel] = None
    available_profiles: Optional[list[ProfileModel]] = None
    user: Optional[UserModel] = None

    @classmethod
    def from_tokens(cls, tokens: SessionTokens) -> "SessionResponse":
        """Build the wire response from a session result.

        Factory Method: the mapping lives here, colocated with the output
        model, rather than in each route handler.
        """
        return cls(
            access_token=tokens.access_token,
            client_token=tokens.client_token,
            selected_profile=(
                ProfileModel.from_profile(tokens.selected_profile) if tokens.selected_profile is not None else None
            ),
            available_profiles=(
                [ProfileModel.from_profile(p) for p in tokens.available_profiles]
                if tokens.available_profiles is not None
                else None
            ),
            user=UserModel.from_user_info(tokens.user) if tokens.user is not None else None,
        )


class YggdrasilError(BaseModel):
    """Structured Yggdrasil error body."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    error: str
    error_message: str


class ServerInfoResponse(BaseModel):
    """Response for GET /auth -- the server metadata document."""

    model_config = ConfigDict(alias_generator=to_pascal, populate_by_name=True, frozen=True)

    status: str = "OK"
    runtime_mode: str = "productionMode"
    application_author: str
    application_description: str
    specification_version: str
    implementation_version: str
    application_owner: str
    public_key: str


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
