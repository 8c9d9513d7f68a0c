"""Shared boto3 session and client configuration for the AWS stores."""

from __future__ import annotations

from typing import TYPE_CHECKING

import boto3
from botocore.config import Config as BotoConfig

if TYPE_CHECKING:
    from featurestore.core import config


def create_session(settings: config.Settings) -> boto3.session.Session:
    """Create a boto3 session for the configured region."""
    return boto3.session.Session(region_name=settings.region)


def client_config(settings: config.Settings) -> BotoConfig:
    """Build botocore timeouts and retry policy from settings.

    Timeouts and retries are left to botocore; a request that exhausts them
    surfaces as a regular client error to the caller.
    """
    return BotoConfig(
        connect_timeout=settings.request_timeout_s,
        read_timeout=settings.request_timeout_s,
        retries={"max_attempts": 5, "mode": "standard"},
    )
