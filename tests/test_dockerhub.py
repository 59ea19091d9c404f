import json

import aiohttp
import pytest
from unittest.mock import MagicMock

from deploy_proxy.dockerhub import DockerHub
from deploy_proxy.dockerhub.models import DockerHubPush
from deploy_proxy.exceptions import AuthenticityError, ParseError, ValidationError
from tests.utils import load_sample_data, mock_response

CALLBACK_BASE = "https://registry.hub.docker.com/u/mozilla/testrepo/hook"


def make_event(**changes) -> DockerHubPush:
    data = load_sample_data("dockerhub_base.json")
    if "callback_url" in changes:
        data["callback_url"] = changes.pop("callback_url")
    if "namespace" in changes:
        data["repository"]["namespace"] = changes.pop("namespace")
    if "name" in changes:
        data["repository"]["name"] = changes.pop("name")
    if "tag" in changes:
        data["push_data"]["tag"] = changes.pop("tag")
    return DockerHubPush.from_body(json.dumps(data).encode())


def make_session(status=200):
    session = MagicMock()
    session.post = MagicMock(return_value=mock_response(status))
    return session


def test_from_body():
    event = make_event()

    assert event.kind == "dockerhub"
    assert event.namespace == "mozilla"
    assert event.repo_name == "testrepo"
    assert event.tag == "v1.1.1"
    assert event.callback_url.startswith(CALLBACK_BASE)
    assert event.raw_payload["repository"]["repo_name"] == "mozilla/testrepo"


@pytest.mark.parametrize("body", [b'{"invalid"', b"[]", b'{"callback_url": "x"}'])
def test_from_body_malformed(body):
    with pytest.raises(ParseError):
        DockerHubPush.from_body(body)


@pytest.mark.asyncio
async def test_verify_valid_request(config):
    session = make_session()
    dockerhub = DockerHub(session=session, config=config)

    request = await dockerhub.verify(make_event())

    assert request.job_path == ("dockerhub", "mozilla", "testrepo")
    assert request.params["Tag"] == "v1.1.1"
    assert json.loads(request.params["RawJSON"])["repository"]["name"] == "testrepo"

    session.post.assert_called_once()
    assert session.post.call_args[0][0] == make_event().callback_url
    assert session.post.call_args[1]["json"]["state"] == "success"


@pytest.mark.asyncio
async def test_verify_invalid_namespace(config):
    session = make_session()
    dockerhub = DockerHub(session=session, config=config)

    with pytest.raises(AuthenticityError, match="Invalid Namespace"):
        await dockerhub.verify(make_event(namespace="invalidddd"))

    session.post.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "callback_url",
    [
        "https://registry.hub.docker.com/u/maliciousowner/testrepo/hook/2020202020/",
        "https://evil.example/u/mozilla/testrepo/hook/2020202020/",
        f"{CALLBACK_BASE}/../../../maliciousowner/testrepo/hook/2020202020/",
        f"{CALLBACK_BASE}/2141b5bi5i5b02bec211i4eeih0242eg11000a/\n",
    ],
)
async def test_verify_faked_callback(config, callback_url):
    session = make_session()
    dockerhub = DockerHub(session=session, config=config)

    with pytest.raises(AuthenticityError):
        await dockerhub.verify(make_event(callback_url=callback_url))

    session.post.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 403, 404, 500])
async def test_verify_failing_callback(config, status):
    dockerhub = DockerHub(session=make_session(status), config=config)

    with pytest.raises(AuthenticityError):
        await dockerhub.verify(make_event())


@pytest.mark.asyncio
async def test_verify_callback_transport_error(config):
    session = MagicMock()
    session.post = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
    dockerhub = DockerHub(session=session, config=config)

    with pytest.raises(AuthenticityError):
        await dockerhub.verify(make_event())


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "changes",
    [
        {"name": "abkljaiojewiojf[[[[[[{{}}{}{}"},
        {"name": "../admin"},
        {"tag": "v1.1.1[bad]"},
        {"tag": "v1/../../x"},
    ],
)
async def test_verify_invalid_name_or_tag(config, changes):
    session = make_session()
    dockerhub = DockerHub(session=session, config=config)

    with pytest.raises(ValidationError):
        await dockerhub.verify(make_event(**changes))

    session.post.assert_not_called()
