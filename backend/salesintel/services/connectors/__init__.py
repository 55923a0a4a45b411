from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..types import SourceType
from .base import BaseConnector, ConnectorResult
from .apollo import ApolloConnector
from .brightdata import BrightDataConnector
from .hunter import HunterConnector
from .serpapi import SerpAPIConnector
from .snov import SnovConnector

logger = logging.getLogger(__name__)

Collector = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]


class CollectorRegistry:
    """
    Source id -> collector.

    Adding a source means registering a callable here; neither the planner
    nor the engine branch on source ids.
    """

    def __init__(self) -> None:
        self._collectors: Dict[SourceType, Collector] = {}
        self._configured: Dict[SourceType, bool] = {}

    def register(self, source: Any, collector: Collector, configured: bool = True) -> None:
        src = SourceType.parse(source)
        if src is None:
            raise ValueError(f"Unknown source id '{source}'")
        self._collectors[src] = collector
        self._configured[src] = bool(configured)

    def unregister(self, source: Any) -> None:
        src = SourceType.parse(source)
        self._collectors.pop(src, None)
        self._configured.pop(src, None)

    def get(self, source: Any) -> Optional[Collector]:
        src = SourceType.parse(source)
        if src is None:
            return None
        return self._collectors.get(src)

    def is_configured(self, source: Any) -> bool:
        src = SourceType.parse(source)
        return bool(src is not None and self._configured.get(src, False))

    def sources(self) -> List[SourceType]:
        return list(self._collectors)

    def __contains__(self, source: Any) -> bool:
        return self.get(source) is not None

    def __len__(self) -> int:
        return len(self._collectors)


def build_default_registry() -> CollectorRegistry:
    """
    Register every HTTP collector we ship. Collectors without credentials are
    still registered (they return None) but flagged as not configured so the
    health check can report them.
    """
    registry = CollectorRegistry()
    connectors: Dict[SourceType, BaseConnector] = {
        SourceType.serp_organic: SerpAPIConnector("organic"),
        SourceType.serp_news: SerpAPIConnector("news"),
        SourceType.serp_jobs: SerpAPIConnector("jobs"),
        SourceType.serp_linkedin: SerpAPIConnector("linkedin"),
        SourceType.serp_youtube: SerpAPIConnector("youtube"),
        # Generic SerpAPI alias resolves to organic search
        SourceType.serp_api: SerpAPIConnector("organic"),
        SourceType.snov_contacts: SnovConnector(),
        SourceType.apollo: ApolloConnector("apollo", include_organization=True),
        SourceType.apollo_contacts: ApolloConnector("apollo_contacts", include_organization=False),
        SourceType.hunter: HunterConnector(),
        SourceType.brightdata: BrightDataConnector(),
    }
    for source, connector in connectors.items():
        registry.register(source, connector, configured=connector.is_configured())
        if not connector.is_configured():
            logger.info(
                "Collector for '%s' has no credentials; it will report nothing",
                source.value,
                extra={"source": source.value},
            )
    return registry


__all__ = [
    "BaseConnector",
    "Collector",
    "CollectorRegistry",
    "ConnectorResult",
    "build_default_registry",
]
