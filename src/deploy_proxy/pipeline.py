from typing import Protocol

from deploy_proxy.events import WebhookEvent
from deploy_proxy.exceptions import DeployProxyError
from deploy_proxy.jenkins import Jenkins
from deploy_proxy.metrics import record_received, record_rejected
from deploy_proxy.models import TriggerRequest


class Verifier(Protocol):
    async def verify(self, event) -> TriggerRequest: ...


class Pipeline:
    """Runs an event through the verifier for its source, then triggers Jenkins."""

    def __init__(self, jenkins: Jenkins, verifiers: dict[str, Verifier]):
        self.jenkins = jenkins
        self.verifiers = verifiers

    async def process(self, event: WebhookEvent) -> TriggerRequest:
        record_received(event.kind)
        verifier = self.verifiers[event.kind]
        try:
            request = await verifier.verify(event)
            await self.jenkins.trigger(request)
        except DeployProxyError as e:
            record_rejected(event.kind, e)
            raise
        return request
