import re

from sanic.log import logger

from deploy_proxy.exceptions import ValidationError

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]{2,255}$")
TAG_PATTERN = re.compile(r"^[a-zA-Z0-9_\-\.]{1,100}$")
DIGEST_PATTERN = re.compile(r"^[a-zA-Z0-9_+.\-]+:[0-9a-fA-F]{32,}$")
REVISION_PATTERN = re.compile(r"^[0-9a-f]{12,40}$")
TASK_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_\-]{22}$")
VARIANT_PATTERN = re.compile(r"^[a-zA-Z0-9_\-\.]{0,100}$")
REF_PATTERN = re.compile(r"^refs/(heads|tags)/[a-zA-Z0-9_\-\./]{1,200}$")


def check_pattern(pattern: re.Pattern, value: str, label: str) -> str:
    """
    Return ``value`` if it fully matches ``pattern``.

    Values derived from webhook or bus payloads must pass through here before
    they become part of a Jenkins job path or form parameter.

    Raises:
        ValidationError: naming ``label`` and the rejected value
    """
    if not isinstance(value, str) or pattern.fullmatch(value) is None:
        logger.debug("Rejecting %s %r, does not match %s", label, value, pattern.pattern)
        raise ValidationError(f"Invalid {label}: {value!r}")
    return value


def check_name(value: str, label: str) -> str:
    return check_pattern(NAME_PATTERN, value, label)


def check_tag(value: str, label: str = "tag") -> str:
    return check_pattern(TAG_PATTERN, value, label)


def job_url_path(job_path: tuple[str, ...] | list[str]) -> str:
    """Turn ``("a", "b")`` into ``/job/a/job/b``, validating every segment."""
    if not job_path:
        raise ValidationError("Empty job path")
    for segment in job_path:
        check_name(segment, "job path segment")
    return "".join(f"/job/{segment}" for segment in job_path)
