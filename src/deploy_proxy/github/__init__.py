import asyncio
import ipaddress
import json
from typing import Mapping

import aiohttp
import gidgethub
from gidgethub import aiohttp as gh_aiohttp
from gidgethub.sansio import validate_event
from sanic.log import logger

from deploy_proxy.config import Config
from deploy_proxy.exceptions import AuthenticityError, OriginError, ParseError
from deploy_proxy.github.models import GitHubPush, MetaResponse
from deploy_proxy.models import TriggerRequest
from deploy_proxy.utils import REF_PATTERN, check_name, check_pattern

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


async def fetch_hook_ranges(
    session: aiohttp.ClientSession, config: Config
) -> list[IPNetwork]:
    """Fetch the CIDR ranges GitHub delivers webhooks from."""
    gh = gh_aiohttp.GitHubAPI(session, "deploy-proxy", base_url=config.GITHUB_API_URL)
    try:
        meta = MetaResponse.model_validate(
            await asyncio.wait_for(gh.getitem("/meta"), timeout=config.HTTP_TIMEOUT)
        )
    except (gidgethub.GitHubException, aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise RuntimeError(f"Error fetching github meta: {e}") from e
    except ValueError as e:
        raise RuntimeError(f"Error unmarshaling github meta: {e}") from e

    ranges = []
    for cidr in meta.hooks:
        try:
            ranges.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError as e:
            raise RuntimeError(f"Invalid cidr: {cidr} err: {e}") from e
    logger.debug("Loaded %d github hook ranges", len(ranges))
    return ranges


def ip_in_ranges(ip: str, ranges: list[IPNetwork]) -> bool:
    try:
        address = ipaddress.ip_address(ip.strip())
    except ValueError:
        return False
    if not ranges:
        return False
    return all(address in cidr for cidr in ranges)


class GitHub:
    """
    Verifies GitHub push webhooks by network origin and organization.

    The source ranges are fetched once, when the adapter is created, see
    :meth:`create`.
    """

    def __init__(self, config: Config, source_ranges: list[IPNetwork]):
        self.config = config
        self.source_ranges = source_ranges
        self.valid_orgs = config.VALID_ORGS
        self.use_x_forwarded_for = config.USE_X_FORWARDED_FOR

    @classmethod
    async def create(cls, session: aiohttp.ClientSession, config: Config) -> "GitHub":
        return cls(config, await fetch_hook_ranges(session, config))

    def ip_from_request(self, headers: Mapping[str, str], remote_ip: str) -> str:
        if not self.use_x_forwarded_for:
            return remote_ip
        # the right-most entry was added by the proxy in front of us
        return headers.get("X-Forwarded-For", "").split(",")[-1].strip()

    def check_origin(self, ip: str):
        if not ip_in_ranges(ip, self.source_ranges):
            logger.warning("Received POST from unknown IP: %s", ip)
            raise OriginError(f"Unknown source ip: {ip}")

    def parse_request(self, headers: Mapping[str, str], body: bytes) -> GitHubPush:
        event_type = headers.get("X-Github-Event")
        if event_type != "push":
            raise ParseError(f"Only push event is supported, got {event_type!r}")

        if self.config.GITHUB_WEBHOOK_SECRET:
            signature = headers.get("X-Hub-Signature-256", "")
            try:
                validate_event(
                    body, signature=signature, secret=self.config.GITHUB_WEBHOOK_SECRET
                )
            except gidgethub.ValidationFailure as e:
                logger.warning("Invalid webhook signature: %s", e)
                raise AuthenticityError(f"Signature mismatch: {e}") from e

        return GitHubPush.from_body(body)

    def is_valid_org(self, org: str) -> bool:
        return org in self.valid_orgs

    async def verify(self, event: GitHubPush) -> TriggerRequest:
        if not self.is_valid_org(event.org_login):
            logger.warning("Invalid Org: %s", event.org_login)
            raise AuthenticityError(f"Invalid Org: {event.org_login}")

        org = check_name(event.org_login, "github organization")
        repo = check_name(event.repo_name, "github repository")
        ref = check_pattern(REF_PATTERN, event.ref, "git ref")

        logger.info("Triggering Jenkins Job for: %s %s with ref: %s", org, repo, ref)

        return TriggerRequest(
            source=event.kind,
            job_path=("github", org, repo),
            params={"Ref": ref, "RawJSON": json.dumps(event.raw_payload)},
        )
