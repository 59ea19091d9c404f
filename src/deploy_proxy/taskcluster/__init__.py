import asyncio
import json

import aiohttp
import pydantic
from sanic.log import logger
from taskcluster.aio import Queue
from taskcluster.exceptions import TaskclusterFailure

from deploy_proxy.config import Config
from deploy_proxy.exceptions import UpstreamError, ValidationError
from deploy_proxy.models import PulseBinding, TriggerRequest
from deploy_proxy.taskcluster.models import DeployExtra, TaskclusterCompletion
from deploy_proxy.utils import (
    TASK_ID_PATTERN,
    VARIANT_PATTERN,
    check_name,
    check_pattern,
)

TASK_COMPLETED_EXCHANGE = "exchange/taskcluster-queue/v1/task-completed"
DEPLOY_EXTRA_KEY = "cloudops-deploy"


class Taskcluster:
    """
    Turns completed Taskcluster tasks routed to the deploy prefix into jobs.

    The task id comes from the queue service itself, and the deployment
    metadata is read back from the task definition, so this trusts
    Taskcluster rather than cross-checking it.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: Config,
        queue: Queue | None = None,
    ):
        self.config = config
        self.route_prefix = f"route.{config.CLOUDOPS_DEPLOY_PULSE_PREFIX}"
        self.queue = queue or Queue(
            session=session,
            options={"rootUrl": config.TASKCLUSTER_ROOT_URL, "maxRetries": 0},
        )

    def bindings(self) -> list[PulseBinding]:
        return [
            PulseBinding(
                routing_key=f"{self.route_prefix}.#",
                exchange_name=TASK_COMPLETED_EXCHANGE,
            )
        ]

    def sub_route(self, routing_key: str) -> str | None:
        """Return the part of ``routing_key`` after the prefix, None if it has none."""
        prefix = f"{self.route_prefix}."
        if not routing_key.startswith(prefix):
            return None
        return routing_key[len(prefix) :]

    def accepts(self, routing_key: str) -> bool:
        return self.sub_route(routing_key) is not None

    async def get_deploy_extra(self, task_id: str) -> DeployExtra:
        try:
            task = await asyncio.wait_for(
                self.queue.task(task_id), timeout=self.config.HTTP_TIMEOUT
            )
        except (TaskclusterFailure, aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamError(f"Error fetching task {task_id}: {e}") from e

        extra = task.get("extra", {})
        try:
            return DeployExtra.model_validate(extra[DEPLOY_EXTRA_KEY])
        except (KeyError, TypeError, pydantic.ValidationError) as e:
            raise UpstreamError(
                f"Task {task_id} has no usable extra.{DEPLOY_EXTRA_KEY}: {e!r}"
            ) from e

    async def verify(self, event: TaskclusterCompletion) -> TriggerRequest:
        route = self.sub_route(event.routing_key)
        if not route:
            raise ValidationError(
                f"Routing key {event.routing_key} has no route below {self.route_prefix}"
            )

        segments = tuple(
            check_name(segment, "taskcluster route segment")
            for segment in route.split(".")
        )
        task_id = check_pattern(TASK_ID_PATTERN, event.task_id, "task id")

        deploy = await self.get_deploy_extra(task_id)
        event.extra_metadata = deploy.model_dump(by_alias=True)

        image_task_id = check_pattern(TASK_ID_PATTERN, deploy.image_task_id, "image task id")
        variant = check_pattern(VARIANT_PATTERN, deploy.variant, "variant")

        logger.debug(
            "Task %s completed for route %s, image task %s", task_id, route, image_task_id
        )

        return TriggerRequest(
            source=event.kind,
            job_path=("taskcluster",) + segments,
            params={
                "TASK_ID": task_id,
                "IMAGE_TASK_ID": image_task_id,
                "VARIANT": variant,
                "RawJSON": json.dumps(event.raw_payload),
            },
        )
