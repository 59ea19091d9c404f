from typing import Callable

import aiohttp
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sanic import Request, Sanic, response
from sanic.log import logger

from deploy_proxy.config import Config
from deploy_proxy.dockerhub import DockerHub
from deploy_proxy.dockerhub.models import DockerHubPush
from deploy_proxy.events import WebhookEvent
from deploy_proxy.exceptions import DeployProxyError
from deploy_proxy.gcr import Gcr
from deploy_proxy.gcr.models import GcrPush
from deploy_proxy.github import GitHub
from deploy_proxy.hgmo import Hgmo
from deploy_proxy.jenkins import Jenkins
from deploy_proxy.pipeline import Pipeline
from deploy_proxy.pulse import Pulse, hgmo_consumer, taskcluster_consumer
from deploy_proxy.taskcluster import Taskcluster

ALL_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


async def setup_components(app: Sanic, config: Config):
    logger.debug("Creating aiohttp session")
    session = aiohttp.ClientSession()
    app.ctx.aiohttp_session = session

    jenkins = Jenkins(session=session, config=config)
    hgmo = Hgmo(session=session, config=config)
    taskcluster = Taskcluster(session=session, config=config)
    verifiers = {
        "dockerhub": DockerHub(session=session, config=config),
        "gcr": Gcr(),
        "hgmo": hgmo,
        "taskcluster": taskcluster,
    }

    if config.GITHUB_ENABLED:
        # a failure to load the hook ranges stops the server from starting
        app.ctx.github = await GitHub.create(session, config)
        verifiers["github"] = app.ctx.github

    app.ctx.pipeline = Pipeline(jenkins, verifiers)

    app.ctx.pulse = None
    if config.pulse_enabled:
        app.ctx.pulse = Pulse(
            config,
            [
                hgmo_consumer(hgmo, app.ctx.pipeline, config),
                taskcluster_consumer(taskcluster, app.ctx.pipeline, config),
            ],
        )
        await app.ctx.pulse.start()


async def teardown_components(app: Sanic):
    if getattr(app.ctx, "pulse", None) is not None:
        await app.ctx.pulse.stop()
    if getattr(app.ctx, "aiohttp_session", None) is not None:
        await app.ctx.aiohttp_session.close()


async def handle_webhook(
    request: Request, source: str, parse: Callable[[Request], WebhookEvent]
) -> response.HTTPResponse:
    if request.method != "POST":
        return response.text("Bad Request", status=400)

    logger.info("Received %s request from: %s", source, request.ip)

    try:
        event = parse(request)
        await request.app.ctx.pipeline.process(event)
    except DeployProxyError as e:
        logger.error("Error handling %s request: %s", source, e)
        return response.text(e.public_message, status=e.status_code)

    return response.text("OK")


def create_app(config: Config | None = None) -> Sanic:
    if config is None:
        config = Config()

    app = Sanic("deploy-proxy")
    app.update_config(config)
    app.ctx.config = config
    logger.setLevel(config.OVERRIDE_LOGGING)

    @app.listener("before_server_start")
    async def init(app, loop):
        config.print_config()
        await setup_components(app, config)

    @app.listener("after_server_stop")
    async def shutdown(app, loop):
        await teardown_components(app)

    @app.route("/__heartbeat__")
    async def heartbeat(request):
        return response.text("OK")

    @app.route("/__lbheartbeat__")
    async def lbheartbeat(request):
        return response.text("OK")

    @app.route("/__metrics__")
    async def metrics(request):
        return response.raw(generate_latest(), content_type=CONTENT_TYPE_LATEST)

    @app.route("/dockerhub", methods=ALL_METHODS)
    async def dockerhub(request):
        return await handle_webhook(
            request, "dockerhub", lambda req: DockerHubPush.from_body(req.body)
        )

    if config.GCR_ENABLED:

        @app.route("/gcr", methods=ALL_METHODS)
        async def gcr(request):
            return await handle_webhook(
                request, "gcr", lambda req: GcrPush.from_body(req.body)
            )

    if config.GITHUB_ENABLED:

        def parse_github(req: Request):
            github: GitHub = req.app.ctx.github
            github.check_origin(github.ip_from_request(req.headers, req.ip))
            return github.parse_request(req.headers, req.body)

        @app.route(config.GITHUB_PATH, methods=ALL_METHODS, name="github")
        async def github(request):
            return await handle_webhook(request, "github", parse_github)

    return app
