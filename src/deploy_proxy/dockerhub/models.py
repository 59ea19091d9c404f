import json
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict

from deploy_proxy.exceptions import ParseError


class Repository(BaseModel):
    model_config = ConfigDict(extra="allow")

    namespace: str
    name: str


class PushData(BaseModel):
    model_config = ConfigDict(extra="allow")

    tag: str


class DockerHubWebhookData(BaseModel):
    model_config = ConfigDict(extra="allow")

    callback_url: str
    repository: Repository
    push_data: PushData


class CallbackData(BaseModel):
    state: Literal["success", "failure", "error"]
    description: str = ""
    context: str = ""
    target_url: str = ""


def success_callback_data() -> CallbackData:
    return CallbackData(
        state="success",
        description="Build request accepted",
        context="Cloudops deployment proxy",
    )


class DockerHubPush(BaseModel):
    kind: Literal["dockerhub"] = "dockerhub"
    namespace: str
    repo_name: str
    tag: str
    callback_url: str
    raw_payload: dict[str, Any]

    @classmethod
    def from_body(cls, body: bytes) -> "DockerHubPush":
        try:
            raw = json.loads(body)
            data = DockerHubWebhookData.model_validate(raw)
        except (ValueError, pydantic.ValidationError) as e:
            raise ParseError(f"Could not decode dockerhub webhook: {e}") from e

        return cls(
            namespace=data.repository.namespace,
            repo_name=data.repository.name,
            tag=data.push_data.tag,
            callback_url=data.callback_url,
            raw_payload=raw,
        )
