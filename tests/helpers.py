"""Fake HTTP responses and clients shared by the test modules."""

import json
from typing import Any, Optional
from unittest.mock import Mock

import requests

from range_sync.exceptions import RequestFailed


def make_response(status_code: int = 200, payload: Any = None, body: Optional[bytes] = None) -> Mock:
    """Mock of requests.Response honouring raise_for_status().

    `body` sets raw content that is not JSON; json() then raises ValueError.
    """
    resp = Mock(spec=requests.Response)
    resp.status_code = status_code
    if body is not None:
        resp.content = body
        resp.json.side_effect = ValueError("Expecting value: line 1 column 1 (char 0)")
    else:
        resp.content = json.dumps(payload).encode("utf-8") if payload is not None else b""
        resp.json.return_value = payload
    if 200 <= status_code < 300:
        resp.raise_for_status.return_value = None
    else:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status_code} Error", response=resp)
    return resp


def fake_source_client(documents: dict, failing: Optional[set] = None) -> Mock:
    """ResilientClient stand-in serving documents by URL."""
    failing = failing or set()
    client = Mock(name="source_client")

    def _get_json(url, params=None):
        if url in failing:
            raise RequestFailed("GET", url, 2, ConnectionError("boom"))
        return documents[url]

    client.get_json.side_effect = _get_json
    return client
