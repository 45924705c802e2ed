"""Shared configuration utilities."""

import json
import os
from typing import Dict, Optional


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> str:
    """Get environment variable with optional default and required validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set")
    return value


def get_database_url() -> str:
    """Get the local persistence database URL from environment."""
    return get_env(
        "DATABASE_URL",
        "sqlite:///./journal_local.db",
        required=False
    )


def get_aws_config() -> dict:
    """Get AWS configuration from environment."""
    return {
        "region": get_env("AWS_REGION", "us-east-1"),
        "s3_bucket": get_env("AWS_S3_BUCKET", "dailycraft-journal"),
        "access_key_id": get_env("AWS_ACCESS_KEY_ID"),
        "secret_access_key": get_env("AWS_SECRET_ACCESS_KEY"),
        "endpoint_url": get_env("AWS_ENDPOINT_URL"),
        "connect_timeout": float(get_env("REMOTE_CONNECT_TIMEOUT", "10")),
        "read_timeout": float(get_env("REMOTE_READ_TIMEOUT", "60")),
    }


def get_journal_root() -> str:
    """Get the root prefix under which the journal folder chain lives."""
    return get_env("JOURNAL_ROOT_PREFIX", "dailycraft").strip("/")


def get_push_concurrency() -> int:
    """Get the number of entries pushed concurrently during a sync pass."""
    try:
        return max(1, int(get_env("SYNC_PUSH_CONCURRENCY", "1")))
    except ValueError:
        return 1


def get_app_users() -> Dict[str, str]:
    """Get the configured ``{username: password}`` table."""
    raw = get_env("APP_USERS", "{}")
    try:
        users = json.loads(raw)
    except json.JSONDecodeError:
        raise ValueError("APP_USERS must be a JSON object of username to password")
    if not isinstance(users, dict):
        raise ValueError("APP_USERS must be a JSON object of username to password")
    return users
