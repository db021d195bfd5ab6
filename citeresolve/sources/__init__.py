from __future__ import annotations

from typing import Dict, Optional

from ..runtime_config import RUNTIME_CONFIG, RuntimeConfig
from .arxiv import ArxivAdapter
from .base import SourceAdapter
from .crossref import CrossrefAdapter
from .openalex import OpenAlexAdapter
from .pubmed import PubMedAdapter
from .semantic_scholar import SemanticScholarAdapter

ADAPTER_CLASSES = (CrossrefAdapter, SemanticScholarAdapter, OpenAlexAdapter, PubMedAdapter, ArxivAdapter)

__all__ = [
    "ADAPTER_CLASSES",
    "ArxivAdapter",
    "CrossrefAdapter",
    "OpenAlexAdapter",
    "PubMedAdapter",
    "SemanticScholarAdapter",
    "SourceAdapter",
    "build_default_adapters",
]


def build_default_adapters(config: Optional[RuntimeConfig] = None) -> Dict[str, SourceAdapter]:
    """Name -> adapter for every source not listed in ``sources.disabled``."""
    cfg = config or RUNTIME_CONFIG
    disabled = set(cfg.sources.disabled)
    adapters: Dict[str, SourceAdapter] = {}
    for cls in ADAPTER_CLASSES:
        if cls.name in disabled:
            continue
        adapters[cls.name] = cls(
            min_interval=cfg.sources.min_interval_seconds.get(cls.name),
            user_agent=cfg.sources.user_agent,
        )
    return adapters
