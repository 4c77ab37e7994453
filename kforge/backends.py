"""
Terraform state backends.

A backend turns the ``backend`` block of the cluster configuration into the
Terraform backend definition written by ``kforge.terraform.workspace``.
"""

import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Type

from kforge.errors import ConfigError


class Backend(ABC):
    """Base class for Terraform state backends."""

    name: str = ""

    def __init__(self, config: Dict[str, Any]):
        self.config = config or {}

    @abstractmethod
    def validate(self) -> None:
        """
        Validate backend settings.

        Raises:
            ConfigError: If required settings are missing
        """
        pass

    @abstractmethod
    def render(self) -> Dict[str, Any]:
        """Return the Terraform backend block, keyed by backend type."""
        pass


class LocalBackend(Backend):
    """State kept in a local file, by default inside the Terraform root."""

    name = "local"

    def validate(self) -> None:
        path = self.config.get("path")
        if path is not None and not isinstance(path, str):
            raise ConfigError("local backend: 'path' must be a string")

    def render(self) -> Dict[str, Any]:
        settings = {}
        if self.config.get("path"):
            settings["path"] = self.config["path"]
        return {"local": settings}


class S3Backend(Backend):
    """State kept in an S3 bucket with optional DynamoDB locking."""

    name = "s3"

    def validate(self) -> None:
        if not self.config.get("bucket"):
            raise ConfigError("s3 backend: no bucket specified")
        if not self.config.get("key"):
            raise ConfigError("s3 backend: no key specified")

        has_creds = self.config.get("aws_creds_path") or os.environ.get("AWS_SHARED_CREDENTIALS_FILE")
        has_region = self.config.get("region") or os.environ.get("AWS_DEFAULT_REGION")
        if not has_creds and not has_region:
            raise ConfigError("s3 backend: no region specified")

    def render(self) -> Dict[str, Any]:
        settings = {
            "bucket": self.config["bucket"],
            "key": self.config["key"],
        }
        if self.config.get("region"):
            settings["region"] = self.config["region"]
        if self.config.get("aws_creds_path"):
            settings["shared_credentials_file"] = self.config["aws_creds_path"]
        if self.config.get("dynamodb_table"):
            settings["dynamodb_table"] = self.config["dynamodb_table"]
        return {"s3": settings}


BACKENDS: Dict[str, Type[Backend]] = {
    LocalBackend.name: LocalBackend,
    S3Backend.name: S3Backend,
}


def get_backend(backend_type: Optional[str], config: Optional[Dict[str, Any]] = None) -> Optional[Backend]:
    """
    Build and validate the configured backend.

    Returns:
        Backend instance, or None when no backend is configured
    """
    if not backend_type:
        return None

    backend_cls = BACKENDS.get(backend_type)
    if backend_cls is None:
        raise ConfigError(
            f"Unknown backend '{backend_type}'. Available: {', '.join(sorted(BACKENDS))}"
        )

    backend = backend_cls(config or {})
    backend.validate()
    return backend
