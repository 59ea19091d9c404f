import json
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict

from deploy_proxy.exceptions import ParseError


class PushlogPush(BaseModel):
    model_config = ConfigDict(extra="allow")

    pushid: int
    user: str
    time: int
    push_json_url: str
    push_full_json_url: str = ""


class ChangegroupData(BaseModel):
    model_config = ConfigDict(extra="allow")

    repo_url: str
    heads: list[str]
    pushlog_pushes: list[PushlogPush]
    source: str = ""


class HgPayload(BaseModel):
    type: str
    data: dict[str, Any]


class HgMessage(BaseModel):
    """The pulse envelope; hg.mozilla.org wraps the notification in ``payload``."""

    model_config = ConfigDict(extra="allow")

    payload: HgPayload


class ApiPush(BaseModel):
    changesets: list[str]
    date: int
    user: str


class PushJson(BaseModel):
    lastpushid: int
    pushes: dict[int, ApiPush]


class HgChangegroup(BaseModel):
    kind: Literal["hgmo"] = "hgmo"
    routing_key: str
    repo_url: str
    heads: list[str]
    pushlog_pushes: list[PushlogPush]
    raw_payload: dict[str, Any]

    @classmethod
    def from_delivery(cls, body: bytes, routing_key: str) -> "HgChangegroup":
        try:
            raw = json.loads(body)
            message = HgMessage.model_validate(raw)
        except (ValueError, pydantic.ValidationError) as e:
            raise ParseError(f"Could not decode hg message: {e}") from e

        if message.payload.type != "changegroup.1":
            raise ParseError(f"Unknown hg message type {message.payload.type}")

        try:
            data = ChangegroupData.model_validate(message.payload.data)
        except pydantic.ValidationError as e:
            raise ParseError(f"Could not decode hg message: {e}") from e

        return cls(
            routing_key=routing_key,
            repo_url=data.repo_url,
            heads=data.heads,
            pushlog_pushes=data.pushlog_pushes,
            raw_payload=raw,
        )
