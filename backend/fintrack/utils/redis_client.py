"""Build Redis clients for the progress channel and health checks."""

from __future__ import annotations

import ssl
from typing import Any

from redis import Redis
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.retry import Retry

# Give up after 3 reconnect attempts, backing off up to 2 seconds
CONNECT_RETRIES = 3


def create_redis_client(url: str, **kwargs: Any) -> Redis:
    """Create a Redis client with bounded reconnect retries.

    Hosted providers such as Upstash only accept TLS, so plain redis://
    URLs pointing at them are upgraded to rediss:// without certificate
    verification.

    Args:
        url: Redis connection URL (redis:// or rediss://)
        **kwargs: Extra client arguments (decode_responses, socket_connect_timeout, ...)
    """
    if ".upstash.io" in url and url.startswith("redis://"):
        url = url.replace("redis://", "rediss://", 1)

    kwargs.setdefault(
        "retry", Retry(ExponentialBackoff(cap=2, base=0.2), CONNECT_RETRIES)
    )
    kwargs.setdefault("retry_on_error", [RedisConnectionError, RedisTimeoutError])
    if url.startswith("rediss://"):
        kwargs.setdefault("ssl_cert_reqs", ssl.CERT_NONE)

    return Redis.from_url(url, **kwargs)
