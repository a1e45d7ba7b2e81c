import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

import requests
import urllib3
from requests.exceptions import HTTPError, RequestException

from .exceptions import RequestFailed

logger = logging.getLogger(__name__)


@dataclass
class RetryPolicy:
    """Bounded retry with exponential backoff.

    Attempt 1 runs immediately; the delay before attempt k (k >= 2) is
    base_delay * 2 ** (k - 1).
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must be >= 0, got {self.base_delay}")

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before the given (1-based) attempt."""
        if attempt <= 1:
            return 0.0
        return self.base_delay * (2 ** (attempt - 1))


class ResilientClient:
    """Thin wrapper around requests.Session that retries every call."""

    def __init__(
        self,
        retry_policy: Optional[RetryPolicy] = None,
        timeout: int = 30,
        verify_ssl: bool = True,
        headers: Optional[Dict[str, str]] = None,
        session: Optional[requests.Session] = None,
    ):
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.session = session or requests.Session()
        if headers:
            self.session.headers.update(headers)

        if not verify_ssl:
            # disable insecure HTTPS warnings (self-signed certs)
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def request(
        self,
        method: str,
        url: str,
        *,
        headers: Optional[Dict[str, str]] = None,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> requests.Response:
        """Perform an HTTP request, retrying transport errors and non-2xx responses.

        Raises:
            RequestFailed: after max_attempts unsuccessful attempts.
        """
        policy = self.retry_policy
        last_error: Optional[BaseException] = None
        last_status: Optional[int] = None

        for attempt in range(1, policy.max_attempts + 1):
            try:
                resp = self.session.request(
                    method,
                    url,
                    headers=headers,
                    json=json,
                    params=params,
                    verify=self.verify_ssl,
                    timeout=self.timeout,
                )
                resp.raise_for_status()
                return resp
            except HTTPError as exc:
                last_error = exc
                last_status = exc.response.status_code if exc.response is not None else None
            except RequestException as exc:
                last_error = exc
                last_status = None

            if attempt < policy.max_attempts:
                wait_time = policy.delay_before(attempt + 1)
                logger.warning(
                    "%s %s failed (attempt %s/%s): %s; retrying in %ss",
                    method,
                    url,
                    attempt,
                    policy.max_attempts,
                    last_error,
                    wait_time,
                )
                policy.sleep(wait_time)

        logger.error("%s %s failed after %s attempts: %s", method, url, policy.max_attempts, last_error)
        raise RequestFailed(method, url, policy.max_attempts, last_error, last_status)

    def get_json(self, url: str, *, params: Optional[Dict[str, Any]] = None) -> Any:
        resp = self.request("GET", url, params=params)
        return resp.json()
