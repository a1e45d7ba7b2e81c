import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Set

from .cache_manager import CacheManager
from .config import RangeSource
from .exceptions import NoRangesRetrieved, RequestFailed, SourceUnavailable
from .http_client import ResilientClient
from .models import AddressRange, RangeSnapshot
from .source_parser import parse_source

logger = logging.getLogger(__name__)


def fetch_source(
    client: ResilientClient,
    source: RangeSource,
    cache_manager: Optional[CacheManager] = None,
) -> Set[AddressRange]:
    """Fetch and parse a single source.

    Raises:
        SourceUnavailable: transport failure or undecodable body.
    """
    cache_key = f"source_{source.name}"

    document = None
    if cache_manager:
        document = cache_manager.get(cache_key)
        if document is not None:
            logger.info("Using cached document for source %s", source.name)

    if document is None:
        logger.info("Fetching ranges from %s (%s)", source.name, source.url)
        try:
            document = client.get_json(source.url)
        except RequestFailed as exc:
            raise SourceUnavailable(source.name, exc) from exc
        except ValueError as exc:
            raise SourceUnavailable(source.name, f"invalid JSON: {exc}") from exc

        if cache_manager:
            cache_manager.set(cache_key, document)

    ranges = parse_source(document, source.name)
    logger.info("Source %s contributed %s ranges", source.name, len(ranges))
    return ranges


def aggregate_ranges(
    sources: Sequence[RangeSource],
    client: ResilientClient,
    *,
    cache_manager: Optional[CacheManager] = None,
    workers: int = 1,
    fetched_at: Optional[datetime] = None,
) -> RangeSnapshot:
    """Fetch every source independently and union the results.

    A failing source is logged and contributes nothing. With workers > 1 the
    sources are fetched in a thread pool; the result does not depend on
    completion order.

    Raises:
        NoRangesRetrieved: if all sources combined produced zero ranges.
    """
    fetched_at = fetched_at or datetime.now(timezone.utc)
    per_source: Dict[str, Set[AddressRange]] = {}
    failures: List[SourceUnavailable] = []

    def _run(source: RangeSource) -> None:
        try:
            per_source[source.name] = fetch_source(client, source, cache_manager)
        except SourceUnavailable as exc:
            logger.error("%s", exc)
            failures.append(exc)

    if workers > 1 and len(sources) > 1:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(_run, s) for s in sources]
            for future in as_completed(futures):
                future.result()
    else:
        for source in sources:
            _run(source)

    combined: Set[AddressRange] = set()
    for ranges in per_source.values():
        combined |= ranges

    if not combined:
        raise NoRangesRetrieved(
            f"No address ranges retrieved from any of {len(sources)} source(s) "
            f"({len(failures)} unavailable); refusing to reconcile against an empty set."
        )

    snapshot = RangeSnapshot.from_ranges(combined, fetched_at=fetched_at)
    logger.info(
        "Aggregated %s ranges (IPv4=%s, IPv6=%s) from %s/%s source(s)",
        snapshot.total_count,
        len(snapshot.ipv4),
        len(snapshot.ipv6),
        len(sources) - len(failures),
        len(sources),
    )
    return snapshot
