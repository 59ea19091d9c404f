import asyncio
import json
import re

import aiohttp
from sanic.log import logger

from deploy_proxy.config import Config
from deploy_proxy.dockerhub.models import (
    CallbackData,
    DockerHubPush,
    success_callback_data,
)
from deploy_proxy.exceptions import AuthenticityError
from deploy_proxy.models import TriggerRequest
from deploy_proxy.utils import check_name, check_tag

HOOK_ID_PATTERN = re.compile(r"[a-zA-Z0-9_\-]+/?")


class DockerHub:
    """
    Verifies DockerHub push webhooks.

    DockerHub does not sign its webhooks. Instead every hook carries a
    ``callback_url`` on the registry; posting a status there only succeeds if
    the registry really issued the hook for that repository. A successful
    callback is therefore the proof that the push happened.
    """

    def __init__(self, session: aiohttp.ClientSession, config: Config):
        self.session = session
        self.config = config
        self.valid_namespaces = config.VALID_NAMESPACES
        self._timeout = aiohttp.ClientTimeout(total=config.HTTP_TIMEOUT)

    def is_valid_namespace(self, namespace: str) -> bool:
        return namespace in self.valid_namespaces

    def check_callback_url(self, event: DockerHubPush):
        prefix = (
            f"{self.config.DOCKERHUB_REGISTRY}/u/{event.namespace}/{event.repo_name}/hook/"
        )
        if not event.callback_url.startswith(prefix) or not HOOK_ID_PATTERN.fullmatch(
            event.callback_url[len(prefix) :]
        ):
            logger.warning(
                "Callback url %s does not belong to %s/%s",
                event.callback_url,
                event.namespace,
                event.repo_name,
            )
            raise AuthenticityError(f"Invalid callback url: {event.callback_url}")

    async def callback(self, event: DockerHubPush, data: CallbackData):
        try:
            async with self.session.post(
                event.callback_url,
                json=data.model_dump(),
                timeout=self._timeout,
            ) as resp:
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise AuthenticityError(
                f"Callback to {event.callback_url} failed: {e}"
            ) from e

        if not 200 <= status < 300:
            raise AuthenticityError(
                f"Callback to {event.callback_url} returned {status}"
            )

    async def verify(self, event: DockerHubPush) -> TriggerRequest:
        if not self.is_valid_namespace(event.namespace):
            logger.warning("Invalid Namespace: %s", event.namespace)
            raise AuthenticityError(f"Invalid Namespace: {event.namespace}")

        namespace = check_name(event.namespace, "repository namespace")
        name = check_name(event.repo_name, "repository name")
        tag = check_tag(event.tag, "push tag")

        self.check_callback_url(event)

        logger.debug("Confirming hook via callback %s", event.callback_url)
        await self.callback(event, success_callback_data())

        return TriggerRequest(
            source=event.kind,
            job_path=("dockerhub", namespace, name),
            params={"Tag": tag, "RawJSON": json.dumps(event.raw_payload)},
        )
