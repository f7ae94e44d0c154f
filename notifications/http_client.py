"""
HTTP client for outbound provider calls with connection pooling.

POST requests are never retried at the transport level: a resent SMS
request may deliver twice. Failed sends go back through the queue instead.
"""

import logging
from typing import Any, Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry


logger = logging.getLogger(__name__)


class HTTPClient:
    """
    HTTP client with connection pooling and a bounded default timeout.

    Features:
    - Connection pooling shared across flush cycles
    - Retries limited to idempotent methods
    - Timeouts raise requests.exceptions.Timeout to the caller
    """

    def __init__(
        self,
        pool_connections: int = 4,
        pool_maxsize: int = 10,
        total_retries: int = 2,
        backoff_factor: float = 0.5,
        status_forcelist: Optional[List[int]] = None,
        allowed_methods: Optional[List[str]] = None,
        default_timeout: int = 15
    ):
        """
        Initialize HTTP client.

        Args:
            pool_connections: Number of connection pools to cache
            pool_maxsize: Maximum number of connections per pool
            total_retries: Retry attempts for idempotent methods
            backoff_factor: Backoff factor for retries (delay = backoff_factor * (2 ** retry_count))
            status_forcelist: HTTP status codes to retry on
            allowed_methods: HTTP methods eligible for retry (GET/HEAD/OPTIONS by default)
            default_timeout: Default timeout in seconds
        """
        self.default_timeout = default_timeout
        self.session = requests.Session()

        retry_strategy = Retry(
            total=total_retries,
            backoff_factor=backoff_factor,
            status_forcelist=status_forcelist or [429, 500, 502, 503, 504],
            allowed_methods=allowed_methods or ["GET", "HEAD", "OPTIONS"],
            raise_on_status=False
        )

        adapter = HTTPAdapter(
            max_retries=retry_strategy,
            pool_connections=pool_connections,
            pool_maxsize=pool_maxsize,
            pool_block=True
        )

        self.session.mount("https://", adapter)
        self.session.mount("http://", adapter)

        logger.debug(
            f"HTTP client initialized: pool_maxsize={pool_maxsize}, "
            f"retries={total_retries}, timeout={self.default_timeout}s"
        )

    def request(
        self,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        json: Optional[Any] = None,
        timeout: Optional[int] = None,
        **kwargs
    ) -> requests.Response:
        """
        Make an HTTP request.

        Returns:
            requests.Response: HTTP response

        Raises:
            requests.exceptions.RequestException: On transport failure or 4xx/5xx status
        """
        timeout = timeout or self.default_timeout

        try:
            response = self.session.request(
                method=method.upper(),
                url=url,
                headers=headers or {},
                json=json,
                timeout=timeout,
                **kwargs
            )
            logger.debug(f"{method.upper()} {url} -> {response.status_code}")
            response.raise_for_status()
            return response

        except requests.exceptions.Timeout:
            logger.error(f"Request timeout after {timeout}s: {method.upper()} {url}")
            raise

        except requests.exceptions.RequestException as e:
            logger.error(f"Request failed: {method.upper()} {url} - {e}")
            raise

    def post(self, url: str, **kwargs) -> requests.Response:
        return self.request("POST", url, **kwargs)

    def close(self):
        """Close the HTTP session and release connections"""
        if self.session:
            self.session.close()
            logger.info("HTTP client session closed")
