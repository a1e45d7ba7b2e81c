import logging
from typing import Any, Dict, List, Optional

import requests

from .config import PolicyStoreSettings
from .exceptions import ConfigError, InvalidResponse
from .http_client import ResilientClient, RetryPolicy
from .models import Protocol

logger = logging.getLogger(__name__)

FIREWALL_RULES_ENDPOINT = "/web/api/v2.1/firewall-control"

_SCOPE_FILTER_KEYS = {
    "site": "siteIds",
    "group": "groupIds",
    "account": "accountIds",
}


def decode_body(resp: requests.Response, method: str, url: str) -> Dict[str, Any]:
    """Decode a JSON object body. An empty body decodes to {}."""
    if not resp.content or not resp.content.strip():
        return {}
    try:
        data = resp.json()
    except ValueError as exc:
        raise InvalidResponse(f"{method} {url} returned a non-JSON body (HTTP {resp.status_code})") from exc
    if not isinstance(data, dict):
        raise InvalidResponse(f"{method} {url} returned {type(data).__name__}, expected a JSON object")
    return data


class PolicyStoreClient:
    """Client for the firewall-control endpoints of the remote policy store."""

    def __init__(
        self,
        settings: PolicyStoreSettings,
        retry_policy: Optional[RetryPolicy] = None,
        http: Optional[ResilientClient] = None,
        page_size: int = 200,
    ):
        self.base_url = settings.url.rstrip("/")
        self.scope = settings.scope
        self.scope_id = settings.scope_id
        self.page_size = page_size
        self.http = http or ResilientClient(
            retry_policy=retry_policy,
            timeout=settings.timeout,
            verify_ssl=settings.verify_ssl,
            headers={
                "Authorization": f"Bearer {settings.api_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )
        self.scope_filter()  # fail fast on a bad scope

    @property
    def rules_url(self) -> str:
        return f"{self.base_url}{FIREWALL_RULES_ENDPOINT}"

    def scope_filter(self) -> Dict[str, Any]:
        """Filter object restricting calls to the configured scope."""
        if self.scope == "tenant":
            return {"tenant": True}
        key = _SCOPE_FILTER_KEYS.get(self.scope)
        if key is None:
            raise ConfigError(f"Unsupported policy scope: {self.scope!r}")
        if not self.scope_id:
            raise ConfigError(f"Policy scope {self.scope!r} requires a scope id")
        return {key: [self.scope_id]}

    def _scope_params(self) -> Dict[str, Any]:
        return {k: ",".join(v) if isinstance(v, list) else str(v).lower() for k, v in self.scope_filter().items()}

    def list_rules(self) -> List[Dict[str, Any]]:
        """List every firewall rule in scope, following cursor pagination.

        Raises:
            RequestFailed: if any page cannot be fetched.
            InvalidResponse: if a page is not a JSON object with a "data" list.
        """
        logger.info("Fetching existing firewall rules (scope=%s)", self.scope)
        rules: List[Dict[str, Any]] = []
        cursor: Optional[str] = None

        while True:
            params: Dict[str, Any] = {"limit": self.page_size, **self._scope_params()}
            if cursor:
                params["cursor"] = cursor

            resp = self.http.request("GET", self.rules_url, params=params)
            data = decode_body(resp, "GET", self.rules_url)
            page = data.get("data") or []
            if not isinstance(page, list):
                raise InvalidResponse(f"GET {self.rules_url}: 'data' is {type(page).__name__}, expected a list")
            rules.extend(r for r in page if isinstance(r, dict))

            pagination = data.get("pagination")
            cursor = pagination.get("nextCursor") if isinstance(pagination, dict) else None
            if not cursor:
                break

        logger.info("Fetched %s existing firewall rules", len(rules))
        return rules

    def create_rule(
        self,
        *,
        name: str,
        description: str,
        protocol: Protocol,
        remote_cidr: str,
        port: int,
        action: str = "Allow",
        direction: str = "outbound",
        os_types: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Create one rule; returns the created rule object, or {} if none is echoed back.

        Raises:
            RequestFailed: if the call exhausts its retries.
            InvalidResponse: if a non-empty body is not a JSON object.
        """
        payload = {
            "data": {
                "name": name,
                "description": description,
                "action": action,
                "direction": direction,
                "status": "Enabled",
                "protocol": protocol.value,
                "remoteHosts": [{"type": "addresses", "values": [remote_cidr]}],
                "remotePort": {"type": "specific", "values": [str(port)]},
                "osTypes": list(os_types or []),
            },
            "filter": self.scope_filter(),
        }
        logger.debug("Creating firewall rule %s", name)
        resp = self.http.request("POST", self.rules_url, json=payload)
        created = decode_body(resp, "POST", self.rules_url).get("data")
        if isinstance(created, list):
            created = created[0] if created else {}
        return created if isinstance(created, dict) else {}

    def delete_rule(self, rule_id: str) -> None:
        logger.debug("Deleting firewall rule id=%s", rule_id)
        self.http.request("DELETE", self.rules_url, json={"filter": {"ids": [rule_id]}})
