import pytest
from sanic import Sanic
from sanic_testing import TestManager
from sanic.log import logger

from deploy_proxy.config import Config
from tests.utils import FakeJenkins


@pytest.fixture
def config():
    config = Config(
        JENKINS_BASE_URL="https://jenkins.example",
        JENKINS_USER="fakeuser",
        JENKINS_PASSWORD="fakepass",
        VALID_NAMESPACES=frozenset({"mozilla"}),
        DOCKERHUB_REGISTRY="https://registry.hub.docker.com",
        GITHUB_ENABLED=True,
        VALID_ORGS=frozenset({"mozilla-services"}),
        USE_X_FORWARDED_FOR=True,
        PULSE_USERNAME="",
        PULSE_PASSWORD="",
        HGMO_REPOS=frozenset(
            {"ci/ci-admin", "mozilla-central", "users/mozilla_hocat.ca/hg-extra"}
        ),
        OVERRIDE_LOGGING="DEBUG",
        STERILE=False,
    )

    logger.setLevel(config.OVERRIDE_LOGGING)

    return config


@pytest.fixture
def jenkins():
    return FakeJenkins()


@pytest.fixture(scope="function")
def app(monkeypatch, config) -> Sanic:
    """Create a Sanic app for testing."""
    from deploy_proxy.web import create_app

    app = create_app(config=config)
    TestManager(app)
    return app
