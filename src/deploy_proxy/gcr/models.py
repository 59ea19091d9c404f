import base64
import binascii
import json
import re
from typing import Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field, model_validator

from deploy_proxy.exceptions import ParseError

# registry-domain/project/repository[:tag][@digest]
REFERENCE_PATTERN = re.compile(
    r"^(?P<registry>[a-z0-9](?:[a-z0-9-]*[a-z0-9])?(?:\.[a-z0-9](?:[a-z0-9-]*[a-z0-9])?)*(?::[0-9]+)?)"
    r"/(?P<project>[a-z0-9](?:[a-z0-9._-]*[a-z0-9])?)"
    r"/(?P<repository>[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*)"
    r"(?::(?P<tag>[A-Za-z0-9_][A-Za-z0-9_.-]{0,127}))?"
    r"(?:@(?P<digest>[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}))?$"
)


class ImageReference(BaseModel):
    """A parsed ``registry/project/repository[:tag|@digest]`` reference."""

    model_config = ConfigDict(frozen=True)

    registry: str
    project: str
    repository: str
    tag: str | None = None
    digest: str | None = None

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        match = REFERENCE_PATTERN.fullmatch(reference)
        if match is None:
            raise ValueError(f"Malformed image reference: {reference!r}")
        return cls(**match.groupdict())


class PubSubMessage(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    attributes: dict[str, str] = {}
    data: str
    message_id: str = Field("", alias="messageId")


class PubSubNotification(BaseModel):
    model_config = ConfigDict(extra="allow")

    message: PubSubMessage
    subscription: str = ""


class GcrPush(BaseModel):
    kind: Literal["gcr"] = "gcr"
    action: str
    tag: str | None = None
    digest: str | None = None

    @model_validator(mode="after")
    def check_reference_present(self):
        if not self.tag and not self.digest:
            raise ValueError("Either tag or digest must be present")
        return self

    @property
    def reference(self) -> str:
        """The image reference the event is about: the tag if given, else the digest."""
        return self.tag or self.digest

    @classmethod
    def from_body(cls, body: bytes) -> "GcrPush":
        try:
            notification = PubSubNotification.model_validate_json(body)
            decoded = base64.b64decode(notification.message.data, validate=True)
            return cls.model_validate(json.loads(decoded))
        except (binascii.Error, ValueError, pydantic.ValidationError) as e:
            raise ParseError(f"Could not decode gcr notification: {e}") from e
