from sanic.log import logger

from deploy_proxy.exceptions import AuthenticityError, ValidationError
from deploy_proxy.gcr.models import GcrPush, ImageReference
from deploy_proxy.models import TriggerRequest
from deploy_proxy.utils import DIGEST_PATTERN, check_name, check_pattern, check_tag

ACCEPTED_ACTION = "INSERT"


def parse_reference(event: GcrPush) -> tuple[ImageReference, str]:
    """Return the parsed image reference and its tag (or ``algo:hex`` digest)."""
    try:
        if event.tag:
            reference = ImageReference.parse(event.tag)
            tag_or_digest = reference.tag
        else:
            reference = ImageReference.parse(event.digest)
            tag_or_digest = reference.digest
    except ValueError as e:
        raise ValidationError(str(e)) from e

    if tag_or_digest is None:
        raise ValidationError(f"Image reference {event.reference} has no tag or digest")
    return reference, tag_or_digest


class Gcr:
    async def verify(self, event: GcrPush) -> TriggerRequest:
        if event.action != ACCEPTED_ACTION:
            logger.warning("Invalid gcr action: %s", event.action)
            raise AuthenticityError(f"Invalid action: {event.action}")

        reference, tag_or_digest = parse_reference(event)

        project = check_name(reference.project, "gcr project")
        repository = check_name(reference.repository, "gcr repository")
        if event.tag:
            tag_or_digest = check_tag(tag_or_digest, "gcr tag")
        else:
            tag_or_digest = check_pattern(DIGEST_PATTERN, tag_or_digest, "gcr digest")

        return TriggerRequest(
            source=event.kind,
            job_path=("gcr", project, repository),
            params={
                "Tag": tag_or_digest,
                "RawJSON": event.model_dump_json(exclude={"kind"}),
            },
        )
