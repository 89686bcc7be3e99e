from __future__ import annotations

from functools import lru_cache
from typing import Any

import boto3
from botocore.config import Config

from ...settings import settings


@lru_cache(maxsize=1)
def botocore_config() -> Config:
    # Adaptive SDK retries cover throttling on single calls; `ddb_call` adds its
    # own narrow retry on top and never retries a failed condition.
    return Config(
        retries={"max_attempts": 10, "mode": "adaptive"},
        connect_timeout=settings.ddb_connect_timeout_s,
        read_timeout=settings.ddb_read_timeout_s,
    )


def _connection_kwargs() -> dict[str, Any]:
    out: dict[str, Any] = {"region_name": settings.aws_region, "config": botocore_config()}
    # DynamoDB Local / LocalStack.
    if settings.ddb_endpoint_url:
        out["endpoint_url"] = settings.ddb_endpoint_url
    return out


@lru_cache(maxsize=1)
def dynamodb_resource():
    return boto3.resource("dynamodb", **_connection_kwargs())


@lru_cache(maxsize=1)
def dynamodb_client():
    # TransactWriteItems is only exposed on the low-level client.
    return boto3.client("dynamodb", **_connection_kwargs())


def table_resource(table_name: str):
    return dynamodb_resource().Table(table_name)
