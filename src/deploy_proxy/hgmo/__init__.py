import asyncio
import json

import aiohttp
import pydantic
from sanic.log import logger

from deploy_proxy.config import Config
from deploy_proxy.exceptions import AuthenticityError, UpstreamError, ValidationError
from deploy_proxy.hgmo.models import HgChangegroup, PushJson
from deploy_proxy.models import PulseBinding, TriggerRequest
from deploy_proxy.utils import REVISION_PATTERN, check_name, check_pattern

HG_PUSH_EXCHANGE = "exchange/hgpushes/v2"


class Hgmo:
    """
    Verifies hg.mozilla.org push notifications received over pulse.

    Pulse messages carry no signature, so each push is cross-checked against
    the pushlog of the repository it claims to come from. Only pushes with a
    single head and a single pushlog entry are supported.
    """

    def __init__(self, session: aiohttp.ClientSession, config: Config):
        self.session = session
        self.config = config
        self.valid_repos = config.HGMO_REPOS
        self._timeout = aiohttp.ClientTimeout(total=config.HTTP_TIMEOUT)

    def bindings(self) -> list[PulseBinding]:
        return [
            PulseBinding(routing_key=repo, exchange_name=HG_PUSH_EXCHANGE)
            for repo in sorted(self.valid_repos)
        ]

    def repo_url(self, repo_path: str) -> str:
        return f"{self.config.HGMO_BASE_URL}/{repo_path}"

    async def get_push_json(self, url: str) -> PushJson:
        try:
            async with self.session.get(url, timeout=self._timeout) as resp:
                if resp.status != 200:
                    raise UpstreamError(f"push_json_url {url} returned {resp.status}")
                body = await resp.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamError(f"Error calling push_json_url {url}: {e}") from e

        try:
            return PushJson.model_validate_json(body)
        except pydantic.ValidationError as e:
            raise UpstreamError(
                f"Error parsing push_json_url response body: {e} {body!r}"
            ) from e

    async def verify_message(self, event: HgChangegroup):
        repo_url = self.repo_url(event.routing_key)
        if event.repo_url != repo_url:
            raise AuthenticityError(
                f"Message has repo_url {event.repo_url} which doesn't match "
                f"routing key {event.routing_key}"
            )

        prefix = f"{repo_url}/json-pushes?version=2&"
        msg_push = event.pushlog_pushes[0]
        if not msg_push.push_json_url.startswith(prefix):
            raise AuthenticityError(f"push_json_url does not start with {prefix}")

        # fetch a url built from the push id, never the one the message carries
        push_json = await self.get_push_json(
            f"{prefix}startID={msg_push.pushid - 1}&endID={msg_push.pushid}&tipsonly=1"
        )

        api_push = push_json.pushes.get(msg_push.pushid)
        if api_push is None:
            raise AuthenticityError(
                f"Did not find push {msg_push.pushid} in push_json_url response"
            )

        if (
            msg_push.user != api_push.user
            or msg_push.time != api_push.date
            or len(api_push.changesets) != 1
            or event.heads[0] != api_push.changesets[0]
        ):
            raise AuthenticityError(
                f"push_json_url response does not match pulse message: "
                f"{msg_push.model_dump()} {api_push.model_dump()}"
            )

    async def verify(self, event: HgChangegroup) -> TriggerRequest:
        repo_path = event.routing_key
        if repo_path not in self.valid_repos:
            raise AuthenticityError(f"Unwatched repository {repo_path}")

        if len(event.heads) != 1:
            raise ValidationError(
                f"Message for {repo_path} has {len(event.heads)} heads, only 1 supported"
            )
        if len(event.pushlog_pushes) != 1:
            raise ValidationError(
                f"Message for {repo_path} has {len(event.pushlog_pushes)} pushlog "
                "pushes, only 1 supported"
            )

        segments = repo_path.split("/")
        if len(segments) != 2:
            raise ValidationError(f"Invalid hg.mozilla.org repository path {repo_path}")
        org = check_name(segments[0], "hg.mozilla.org repository path")
        repo = check_name(segments[1], "hg.mozilla.org repository path")
        head = check_pattern(REVISION_PATTERN, event.heads[0], "head revision")

        await self.verify_message(event)

        logger.debug("Push %s to %s verified", head, repo_path)

        return TriggerRequest(
            source=event.kind,
            job_path=("hgmo", org, repo),
            params={
                "HEAD_REPOSITORY": event.repo_url,
                "HEAD_REV": head,
                "RawJSON": json.dumps(event.raw_payload),
            },
        )
