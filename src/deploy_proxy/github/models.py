import json
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict

from deploy_proxy.exceptions import ParseError


class Owner(BaseModel):
    model_config = ConfigDict(extra="allow")

    login: str
    name: str | None = None


class Repository(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    full_name: str
    owner: Owner


class Pusher(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str


class PushEvent(BaseModel):
    model_config = ConfigDict(extra="allow")

    ref: str
    after: str = ""
    repository: Repository
    pusher: Pusher | None = None


class MetaResponse(BaseModel):
    model_config = ConfigDict(extra="allow")

    hooks: list[str]


class GitHubPush(BaseModel):
    kind: Literal["github"] = "github"
    org_login: str
    repo_name: str
    ref: str
    raw_payload: dict[str, Any]

    @classmethod
    def from_body(cls, body: bytes) -> "GitHubPush":
        try:
            raw = json.loads(body)
            data = PushEvent.model_validate(raw)
        except (ValueError, pydantic.ValidationError) as e:
            raise ParseError(f"Could not decode webhook data: {e}") from e

        return cls(
            org_login=data.repository.owner.login,
            repo_name=data.repository.name,
            ref=data.ref,
            raw_payload=raw,
        )
