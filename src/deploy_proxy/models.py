from pydantic import BaseModel, ConfigDict


class TriggerRequest(BaseModel):
    """A verified build request, ready to be handed to Jenkins.

    ``job_path`` holds the folder/job names in order, e.g.
    ``("dockerhub", "mozilla", "testrepo")`` for
    ``/job/dockerhub/job/mozilla/job/testrepo``.
    """

    model_config = ConfigDict(frozen=True)

    source: str
    job_path: tuple[str, ...]
    params: dict[str, str]


class PulseBinding(BaseModel):
    model_config = ConfigDict(frozen=True)

    routing_key: str
    exchange_name: str


class JenkinsCrumb(BaseModel):
    crumb: str
    crumbRequestField: str
