from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings
from sanic.log import logger


class Config(BaseSettings):
    JENKINS_BASE_URL: str
    JENKINS_USER: str
    JENKINS_PASSWORD: str

    VALID_NAMESPACES: frozenset[str] = frozenset({"mozilla"})
    DOCKERHUB_REGISTRY: str = "https://registry.hub.docker.com"

    GCR_ENABLED: bool = True

    GITHUB_ENABLED: bool = False
    GITHUB_PATH: str = "/github"
    GITHUB_API_URL: str = "https://api.github.com"
    GITHUB_WEBHOOK_SECRET: str | None = None
    VALID_ORGS: frozenset[str] = frozenset({"mozilla-services"})
    USE_X_FORWARDED_FOR: bool = False

    PULSE_HOST: str = "amqps://pulse.mozilla.org"
    PULSE_USERNAME: str = ""
    PULSE_PASSWORD: str = ""

    HGMO_REPOS: frozenset[str] = frozenset({"ci/ci-admin", "ci/ci-configuration"})
    HGMO_PULSE_QUEUE: str = "hgmo"
    HGMO_BASE_URL: str = "https://hg.mozilla.org"

    CLOUDOPS_DEPLOY_PULSE_PREFIX: str = "cloudops.deploy.v1"
    CLOUDOPS_DEPLOY_PULSE_QUEUE: str = "deploy-proxy"
    TASKCLUSTER_ROOT_URL: str = "https://firefox-ci-tc.services.mozilla.com"

    HTTP_TIMEOUT: float = 30.0

    OVERRIDE_LOGGING: Literal[
        "CRITICAL",
        "FATAL",
        "ERROR",
        "WARNING",
        "WARN",
        "INFO",
        "DEBUG",
        "NOTSET",
    ] = "INFO"

    STERILE: bool = False

    @field_validator("JENKINS_BASE_URL", "DOCKERHUB_REGISTRY", "HGMO_BASE_URL")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @model_validator(mode="after")
    def check_pulse_settings(self):
        pulse_options = {
            "PULSE_HOST": self.PULSE_HOST,
            "PULSE_USERNAME": self.PULSE_USERNAME,
            "PULSE_PASSWORD": self.PULSE_PASSWORD,
        }
        missing = [name for name, value in pulse_options.items() if not value]
        # the host has a default, so credentials alone decide whether pulse is on
        if self.PULSE_USERNAME or self.PULSE_PASSWORD:
            if missing:
                raise ValueError(
                    f"All or none of {sorted(pulse_options)} must be set, missing {missing}"
                )
        return self

    @property
    def pulse_enabled(self) -> bool:
        return bool(self.PULSE_HOST and self.PULSE_USERNAME and self.PULSE_PASSWORD)

    def print_config(self):
        """Print configuration values with sensitive attributes masked"""
        sensitive_attrs = {
            "JENKINS_PASSWORD",
            "PULSE_PASSWORD",
            "GITHUB_WEBHOOK_SECRET",
        }

        logger.info("=== Deployment Proxy Configuration ===")
        for field_name, field_value in self.model_dump().items():
            if field_name in sensitive_attrs:
                logger.info(f"{field_name}: ***")
            elif isinstance(field_value, frozenset):
                logger.info(f"{field_name}: {sorted(field_value)}")
            else:
                logger.info(f"{field_name}: {field_value}")
        logger.info("======================================")
