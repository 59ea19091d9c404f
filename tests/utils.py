import json
import os
from unittest.mock import AsyncMock, MagicMock, Mock

from deploy_proxy.models import TriggerRequest


def load_sample_data(filename):
    with open(os.path.join("tests/samples", filename)) as f:
        return json.load(f)


def load_sample_bytes(filename) -> bytes:
    with open(os.path.join("tests/samples", filename), "rb") as f:
        return f.read()


def mock_response(status=200, json_data=None, body=None):
    """A response usable as ``async with session.get(...) as resp``."""
    response = MagicMock()
    response.status = status
    response.raise_for_status = Mock()
    response.json = AsyncMock(return_value=json_data)
    if body is None and json_data is not None:
        body = json.dumps(json_data).encode()
    response.read = AsyncMock(return_value=body or b"")
    response.__aenter__.return_value = response
    response.__aexit__.return_value = None
    return response


class FakeJenkins:
    """Records trigger requests instead of talking to Jenkins."""

    def __init__(self):
        self.jobs: list[tuple[tuple[str, ...], dict[str, str]]] = []

    async def trigger(self, request: TriggerRequest):
        params = dict(request.params)
        params.pop("RawJSON", None)
        self.jobs.append((request.job_path, params))
