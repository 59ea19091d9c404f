import asyncio
from typing import Mapping

import aiohttp
import pydantic
from sanic.log import logger

from deploy_proxy.config import Config
from deploy_proxy.exceptions import UpstreamError
from deploy_proxy.metrics import track_jenkins_trigger
from deploy_proxy.models import JenkinsCrumb, TriggerRequest
from deploy_proxy.utils import job_url_path


class Jenkins:
    def __init__(self, session: aiohttp.ClientSession, config: Config):
        self.session = session
        self.config = config
        self._auth = aiohttp.BasicAuth(config.JENKINS_USER, config.JENKINS_PASSWORD)
        self._timeout = aiohttp.ClientTimeout(total=config.HTTP_TIMEOUT)

    def get_url(self, path: str) -> str:
        return f"{self.config.JENKINS_BASE_URL}{path}"

    async def get_crumb(self) -> JenkinsCrumb:
        """Fetch a fresh CSRF crumb. Crumbs are never reused between requests."""
        url = self.get_url("/crumbIssuer/api/json")
        try:
            async with self.session.get(
                url, auth=self._auth, timeout=self._timeout
            ) as resp:
                resp.raise_for_status()
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamError(f"Error requesting csrf token from {url}: {e}") from e
        except ValueError as e:
            raise UpstreamError(f"Could not decode csrf token from {url}: {e}") from e

        try:
            return JenkinsCrumb.model_validate(data)
        except pydantic.ValidationError as e:
            raise UpstreamError(f"Could not decode csrf token from {url}: {e}") from e

    async def trigger_job(self, job_path: tuple[str, ...], params: Mapping[str, str]):
        """
        Start a parameterized build of the job at ``job_path``.

        Every segment of ``job_path`` is checked against the name pattern again
        here, so nothing that slipped past a source verifier reaches Jenkins.

        Raises:
            ValidationError: if a job path segment is not an allowed name
            UpstreamError: if the crumb cannot be fetched or Jenkins does not
                answer 201
        """
        url = self.get_url(job_url_path(job_path) + "/buildWithParameters")

        if self.config.STERILE:
            logger.info("Sterile mode: not posting %s with %s", url, sorted(params))
            return

        crumb = await self.get_crumb()

        logger.debug("Posting build request to %s", url)
        try:
            async with self.session.post(
                url,
                data=dict(params),
                auth=self._auth,
                headers={crumb.crumbRequestField: crumb.crumb},
                timeout=self._timeout,
            ) as resp:
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise UpstreamError(f"Error posting to jenkins {url}: {e}") from e

        if status != 201:
            raise UpstreamError(f"Jenkins returned {status} for {url}, expected 201")

        logger.debug("Jenkins accepted build request for %s", url)

    async def trigger(self, request: TriggerRequest):
        with track_jenkins_trigger(request.source):
            await self.trigger_job(request.job_path, request.params)
        logger.info(
            "Triggered jenkins job %s for %s", "/".join(request.job_path), request.source
        )
