from typing import Annotated, Union

from pydantic import Field

from deploy_proxy.dockerhub.models import DockerHubPush
from deploy_proxy.gcr.models import GcrPush
from deploy_proxy.github.models import GitHubPush
from deploy_proxy.hgmo.models import HgChangegroup
from deploy_proxy.taskcluster.models import TaskclusterCompletion

WebhookEvent = Annotated[
    Union[DockerHubPush, GcrPush, GitHubPush, HgChangegroup, TaskclusterCompletion],
    Field(discriminator="kind"),
]
