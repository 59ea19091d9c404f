import json
from typing import Any, Literal

import pydantic
from pydantic import BaseModel, ConfigDict, Field

from deploy_proxy.exceptions import ParseError


class TaskStatus(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    task_id: str = Field(alias="taskId")


class TaskCompletedMessage(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    status: TaskStatus
    run_id: int | None = Field(None, alias="runId")


class DeployExtra(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image_task_id: str = Field(alias="image-task-id")
    variant: str = ""


class TaskclusterCompletion(BaseModel):
    kind: Literal["taskcluster"] = "taskcluster"
    task_id: str
    routing_key: str
    extra_metadata: dict[str, Any] = {}
    raw_payload: dict[str, Any]

    @classmethod
    def from_delivery(cls, body: bytes, routing_key: str) -> "TaskclusterCompletion":
        try:
            raw = json.loads(body)
            message = TaskCompletedMessage.model_validate(raw)
        except (ValueError, pydantic.ValidationError) as e:
            raise ParseError(f"Could not decode task-completed message: {e}") from e

        return cls(
            task_id=message.status.task_id,
            routing_key=routing_key,
            raw_payload=raw,
        )
