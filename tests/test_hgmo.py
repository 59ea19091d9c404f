import json

import aiohttp
import pytest
from unittest.mock import MagicMock

from deploy_proxy.exceptions import (
    AuthenticityError,
    ParseError,
    UpstreamError,
    ValidationError,
)
from deploy_proxy.hgmo import HG_PUSH_EXCHANGE, Hgmo
from deploy_proxy.hgmo.models import HgChangegroup
from tests.utils import load_sample_data, mock_response

HEAD = "9c9a898b351909b2e0fe8420ac9d649ded523af3"


def make_event(routing_key="ci/ci-admin", **changes) -> HgChangegroup:
    message = load_sample_data("hgmo_changegroup.json")
    message["payload"]["data"].update(changes)
    return HgChangegroup.from_delivery(json.dumps(message).encode(), routing_key)


def make_session(status=200, push_json=None):
    if push_json is None:
        push_json = load_sample_data("hgmo_push_json.json")
    session = MagicMock()
    session.get = MagicMock(return_value=mock_response(status, json_data=push_json))
    return session


def test_bindings(config):
    hgmo = Hgmo(session=MagicMock(), config=config)

    bindings = hgmo.bindings()

    assert {b.routing_key for b in bindings} == set(config.HGMO_REPOS)
    assert {b.exchange_name for b in bindings} == {HG_PUSH_EXCHANGE}


def test_from_delivery():
    event = make_event()

    assert event.routing_key == "ci/ci-admin"
    assert event.repo_url == "https://hg.mozilla.org/ci/ci-admin"
    assert event.heads == [HEAD]
    assert event.pushlog_pushes[0].pushid == 283


@pytest.mark.parametrize(
    "body",
    [
        b"not json",
        b'{"payload": {"type": "obsolete.1", "data": {}}}',
        b'{"payload": {"type": "changegroup.1", "data": {"heads": []}}}',
    ],
)
def test_from_delivery_malformed(body):
    with pytest.raises(ParseError):
        HgChangegroup.from_delivery(body, "ci/ci-admin")


@pytest.mark.asyncio
async def test_verify_valid_message(config):
    session = make_session()
    hgmo = Hgmo(session=session, config=config)

    request = await hgmo.verify(make_event())

    assert request.job_path == ("hgmo", "ci", "ci-admin")
    assert request.params["HEAD_REPOSITORY"] == "https://hg.mozilla.org/ci/ci-admin"
    assert request.params["HEAD_REV"] == HEAD
    session.get.assert_called_once()
    assert session.get.call_args[0][0] == (
        "https://hg.mozilla.org/ci/ci-admin/json-pushes"
        "?version=2&startID=282&endID=283&tipsonly=1"
    )


@pytest.mark.asyncio
async def test_verify_unwatched_repository(config):
    session = make_session()
    hgmo = Hgmo(session=session, config=config)

    with pytest.raises(AuthenticityError, match="Unwatched repository"):
        await hgmo.verify(
            make_event("ci/other", repo_url="https://hg.mozilla.org/ci/other")
        )
    session.get.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize("repo", ["mozilla-central", "users/mozilla_hocat.ca/hg-extra"])
async def test_verify_unsupported_repository_path(config, repo):
    session = make_session()
    hgmo = Hgmo(session=session, config=config)

    with pytest.raises(ValidationError, match="Invalid hg.mozilla.org repository path"):
        await hgmo.verify(make_event(repo, repo_url=f"https://hg.mozilla.org/{repo}"))
    session.get.assert_not_called()


@pytest.mark.asyncio
async def test_verify_multiple_heads(config):
    hgmo = Hgmo(session=make_session(), config=config)

    with pytest.raises(ValidationError, match="has 2 heads"):
        await hgmo.verify(make_event(heads=[HEAD, HEAD]))


@pytest.mark.asyncio
async def test_verify_multiple_pushes(config):
    message = load_sample_data("hgmo_changegroup.json")
    pushes = message["payload"]["data"]["pushlog_pushes"] * 2
    hgmo = Hgmo(session=make_session(), config=config)

    with pytest.raises(ValidationError, match="has 2 pushlog pushes"):
        await hgmo.verify(make_event(pushlog_pushes=pushes))


@pytest.mark.asyncio
async def test_verify_invalid_head(config):
    hgmo = Hgmo(session=make_session(), config=config)

    with pytest.raises(ValidationError):
        await hgmo.verify(make_event(heads=["tip"]))


@pytest.mark.asyncio
async def test_verify_repo_url_mismatch(config):
    hgmo = Hgmo(session=make_session(), config=config)

    with pytest.raises(AuthenticityError, match="doesn't match routing key"):
        await hgmo.verify(
            make_event(repo_url="https://hg.mozilla.org/ci/ci-configuration")
        )


@pytest.mark.asyncio
async def test_verify_foreign_push_json_url(config):
    message = load_sample_data("hgmo_changegroup.json")
    pushes = message["payload"]["data"]["pushlog_pushes"]
    pushes[0]["push_json_url"] = "https://evil.example/ci/ci-admin/json-pushes?version=2&"
    session = make_session()
    hgmo = Hgmo(session=session, config=config)

    with pytest.raises(AuthenticityError, match="push_json_url does not start with"):
        await hgmo.verify(make_event(pushlog_pushes=pushes))
    session.get.assert_not_called()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "push",
    [
        {"changesets": [HEAD], "date": 1585692392, "user": "someone@else"},
        {"changesets": [HEAD], "date": 1, "user": "mozilla@hocat.ca"},
        {"changesets": ["0" * 40], "date": 1585692392, "user": "mozilla@hocat.ca"},
        {"changesets": [HEAD, HEAD], "date": 1585692392, "user": "mozilla@hocat.ca"},
    ],
)
async def test_verify_push_json_mismatch(config, push):
    push_json = {"lastpushid": 283, "pushes": {"283": push}}
    hgmo = Hgmo(session=make_session(push_json=push_json), config=config)

    with pytest.raises(AuthenticityError, match="does not match pulse message"):
        await hgmo.verify(make_event())


@pytest.mark.asyncio
async def test_verify_push_missing_from_push_json(config):
    push_json = {"lastpushid": 284, "pushes": {}}
    hgmo = Hgmo(session=make_session(push_json=push_json), config=config)

    with pytest.raises(AuthenticityError, match="Did not find push 283"):
        await hgmo.verify(make_event())


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [404, 500])
async def test_verify_push_json_failing_status(config, status):
    hgmo = Hgmo(session=make_session(status=status), config=config)

    with pytest.raises(UpstreamError, match=f"returned {status}"):
        await hgmo.verify(make_event())


@pytest.mark.asyncio
async def test_verify_push_json_transport_error(config):
    session = MagicMock()
    session.get = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))
    hgmo = Hgmo(session=session, config=config)

    with pytest.raises(UpstreamError):
        await hgmo.verify(make_event())


@pytest.mark.asyncio
async def test_verify_push_json_unparseable(config):
    session = MagicMock()
    session.get = MagicMock(return_value=mock_response(200, body=b"<html>"))
    hgmo = Hgmo(session=session, config=config)

    with pytest.raises(UpstreamError, match="Error parsing push_json_url"):
        await hgmo.verify(make_event())


@pytest.mark.asyncio
async def test_verify_fetches_url_built_from_push_id(config):
    message = load_sample_data("hgmo_changegroup.json")
    pushes = message["payload"]["data"]["pushlog_pushes"]
    pushes[0]["push_json_url"] = (
        "https://hg.mozilla.org/ci/ci-admin/json-pushes?version=2&startID=0&endID=999#"
    )
    session = make_session()
    hgmo = Hgmo(session=session, config=config)

    await hgmo.verify(make_event(pushlog_pushes=pushes))

    assert session.get.call_args[0][0] == (
        "https://hg.mozilla.org/ci/ci-admin/json-pushes"
        "?version=2&startID=282&endID=283&tipsonly=1"
    )
