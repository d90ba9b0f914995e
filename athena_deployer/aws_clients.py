"""
AWS client factories with lazy initialization.

Using @lru_cache ensures clients are created once per process and region,
and allows easy mocking in tests. boto3 clients are thread-safe, so the
concurrent database workers share them.
"""
from functools import lru_cache
from typing import Optional

import boto3


@lru_cache(maxsize=None)
def get_glue_client(region: Optional[str] = None):
    """Get or create Glue client (cached per region)."""
    return boto3.client('glue', region_name=region)


@lru_cache(maxsize=None)
def get_athena_client(region: Optional[str] = None):
    """Get or create Athena client (cached per region)."""
    return boto3.client('athena', region_name=region)


def clear_client_cache():
    """Clear all cached clients. Useful for testing."""
    get_glue_client.cache_clear()
    get_athena_client.cache_clear()
