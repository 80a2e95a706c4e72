"""
Redis-based rate limiting for API endpoints.
Implements a fixed window counter per client and endpoint.
"""
import logging
from functools import lru_cache, wraps

import redis
from django.conf import settings
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_redis_client():
    """
    Return a connected Redis client, or None if Redis is unreachable.

    The result is cached for the lifetime of the process.
    """
    try:
        client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=5
        )
        client.ping()
    except (redis.ConnectionError, redis.TimeoutError) as e:
        logger.warning(f"Redis connection failed: {e}. Rate limiting will be disabled.")
        return None
    return client


def get_client_ip(request):
    """Extract client IP address from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR', 'unknown')
    return ip


def _limit_headers(max_requests, remaining, ttl):
    return {
        'X-RateLimit-Limit': str(max_requests),
        'X-RateLimit-Remaining': str(remaining),
        'X-RateLimit-Reset': str(ttl),
    }


def rate_limit(max_requests: int = 20, window_seconds: int = 60):
    """
    Redis-based rate limiting decorator for DRF view methods.

    Args:
        max_requests: Maximum number of requests allowed in the window
        window_seconds: Time window in seconds

    Usage:
        @rate_limit(10, 60)  # 10 orders per minute per client
        def post(self, request):
            ...
    """
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(self, request, *args, **kwargs):
            client = get_redis_client() if settings.RATE_LIMIT_ENABLED else None
            if client is None:
                return view_func(self, request, *args, **kwargs)

            key = f"rate_limit:{type(self).__name__}.{view_func.__name__}:{get_client_ip(request)}"
            try:
                current_count = client.incr(key)
                if current_count == 1:
                    client.expire(key, window_seconds)
                ttl = client.ttl(key)
            except redis.RedisError as e:
                logger.error(f"Redis error in rate limiting: {e}")
                return view_func(self, request, *args, **kwargs)

            if current_count > max_requests:
                headers = _limit_headers(max_requests, 0, ttl)
                headers['Retry-After'] = str(ttl)
                return Response(
                    {
                        'error': 'Rate limit exceeded',
                        'detail': f'Maximum {max_requests} requests per {window_seconds} seconds allowed.',
                        'retry_after': ttl
                    },
                    status=status.HTTP_429_TOO_MANY_REQUESTS,
                    headers=headers
                )

            response = view_func(self, request, *args, **kwargs)
            remaining = max(0, max_requests - current_count)
            for header, value in _limit_headers(max_requests, remaining, ttl).items():
                response[header] = value
            return response

        return wrapper
    return decorator
