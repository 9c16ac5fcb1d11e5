from __future__ import annotations

from functools import lru_cache

import boto3
from botocore.config import Config


@lru_cache(maxsize=1)
def botocore_config() -> Config:
    # Timeouts live here. One attempt: storage failures surface to the caller unretried.
    return Config(
        retries={"max_attempts": 1, "mode": "standard"},
        connect_timeout=2,
        read_timeout=10,
    )


@lru_cache(maxsize=4)
def dynamodb_resource(region: str):
    return boto3.resource(
        "dynamodb",
        region_name=region,
        config=botocore_config(),
    )


@lru_cache(maxsize=4)
def dynamodb_client(region: str):
    return boto3.client(
        "dynamodb",
        region_name=region,
        config=botocore_config(),
    )


def table_resource(table_name: str, *, region: str):
    return dynamodb_resource(region).Table(table_name)
