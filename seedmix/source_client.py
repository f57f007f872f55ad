"""
Shared plumbing for the external metadata sources.

Every request goes through the same path:
    cache lookup -> rate limiter wait -> HTTP GET -> throttle retry -> cache store
"""
import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from .errors import RateLimitedError, UpstreamUnavailableError
from .logging_utils import redact
from .rate_limiter import RateLimiter
from .response_cache import ResponseCache

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "SeedMix/1.0 ( https://github.com/seedmix/seedmix )"
THROTTLE_STATUSES = (429, 503)


class SourceClient:
    """Base class for a rate-limited, cached JSON-over-HTTP source."""

    #: Rate limiter bucket name
    API_NAME = ""
    #: Human-readable source name for logs
    SOURCE_NAME = ""
    BASE_URL = ""
    #: Fixed delay before the single retry after a 429/503
    THROTTLE_RETRY_DELAY = 1.0

    def __init__(
        self,
        rate_limiter: RateLimiter,
        cache: Optional[ResponseCache] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 20.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize source client

        Args:
            rate_limiter: Shared limiter (one bucket per API)
            cache: Optional shared response cache
            user_agent: Client-identifying header sent with every request
            timeout: Per-request timeout in seconds
            session: Optional requests session (injectable for tests)
            sleep: Sleep function used for the throttle retry
        """
        self.rate_limiter = rate_limiter
        self.cache = cache
        self.timeout = timeout
        self._sleep = sleep
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': user_agent,
            'Accept': 'application/json',
        })

    def _cached(self, cache_key: Optional[str], ttl: float, fetch: Callable[[], Any]) -> Any:
        """Read-through helper: return cached value or fetch and store non-empty results."""
        if cache_key and self.cache is not None:
            hit = self.cache.get(cache_key)
            if hit is not None:
                return hit
        value = fetch()
        if cache_key and self.cache is not None and value:
            self.cache.set(cache_key, value, ttl)
        return value

    def _get_json(
        self,
        url: str,
        params: Dict[str, Any],
        raise_on_error: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """
        Issue one rate-limited GET and decode JSON.

        Args:
            url: Absolute request URL
            params: Query parameters
            raise_on_error: Surface UpstreamUnavailableError for 5xx/network
                failures instead of returning None

        Returns:
            Decoded JSON, or None when the source has nothing usable

        Raises:
            RateLimitedError: still throttled after the single retry
        """
        for attempt in range(2):
            self.rate_limiter.wait(self.API_NAME)
            try:
                response = self.session.get(url, params=params, timeout=self.timeout)
            except requests.exceptions.RequestException as e:
                logger.warning(f"{self.SOURCE_NAME} request failed: {redact(e)}")
                if raise_on_error:
                    raise UpstreamUnavailableError(f"{self.SOURCE_NAME} request failed: {redact(e)}") from e
                return None

            if response.status_code in THROTTLE_STATUSES:
                if attempt == 0:
                    logger.warning(
                        f"{self.SOURCE_NAME} returned {response.status_code}, "
                        f"retrying in {self.THROTTLE_RETRY_DELAY:.1f}s"
                    )
                    self._sleep(self.THROTTLE_RETRY_DELAY)
                    continue
                raise RateLimitedError(
                    f"{self.SOURCE_NAME} still throttling after retry (HTTP {response.status_code})"
                )

            if response.status_code >= 500 and raise_on_error:
                raise UpstreamUnavailableError(
                    f"{self.SOURCE_NAME} returned HTTP {response.status_code}"
                )

            if not 200 <= response.status_code < 300:
                logger.debug(f"{self.SOURCE_NAME} returned HTTP {response.status_code} for {url}")
                return None

            try:
                return response.json()
            except ValueError:
                logger.warning(f"{self.SOURCE_NAME} returned invalid JSON for {url}")
                return None

        return None
