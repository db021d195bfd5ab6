from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import logging
import tomllib

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[1] / "config" / "runtime.toml"

DEFAULT_DISCOVERY_LIMITS: Dict[str, int] = {
    "semantic_scholar": 15,
    "openalex": 10,
    "arxiv": 10,
    "pubmed": 8,
    "crossref": 8,
}

DEFAULT_MIN_INTERVALS: Dict[str, float] = {
    "crossref": 0.1,
    "openalex": 0.1,
    "semantic_scholar": 1.0,
    "pubmed": 0.34,
    "arxiv": 3.0,
}


@dataclass(frozen=True)
class VerificationConfig:
    early_exit_score: float = 0.9
    adapter_timeout_seconds: float = 20.0
    cache_ttl_seconds: int = 7 * 24 * 3600
    max_suggestions: int = 5
    batch_result_ttl_seconds: int = 3600


@dataclass(frozen=True)
class DiscoveryConfig:
    max_papers: int = 20
    min_quality: float = 0.3
    cache_ttl_seconds: int = 24 * 3600
    max_workers: int = 5
    adapter_timeout_seconds: float = 30.0
    limits: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_DISCOVERY_LIMITS))

    def limit_for(self, source: str) -> int:
        return self.limits.get(source, 10)


@dataclass(frozen=True)
class SourcesConfig:
    disabled: Tuple[str, ...] = ()
    user_agent: str = "citeresolve/0.3"
    min_interval_seconds: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_MIN_INTERVALS))


@dataclass(frozen=True)
class RuntimeConfig:
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    sources: SourcesConfig = field(default_factory=SourcesConfig)


def _safe_int(value: Any, fallback: int) -> int:
    try:
        parsed = int(value)
        return parsed if parsed > 0 else fallback
    except Exception:
        return fallback


def _safe_float(value: Any, fallback: float, *, upper: Optional[float] = None) -> float:
    if isinstance(value, bool):
        return fallback
    try:
        parsed = float(value)
    except Exception:
        return fallback
    if parsed <= 0:
        return fallback
    if upper is not None and parsed > upper:
        return fallback
    return parsed


def _section(raw: Any, name: str) -> Dict[str, Any]:
    val = raw.get(name) if isinstance(raw, dict) else None
    return val if isinstance(val, dict) else {}


def _int_table(raw: Any, defaults: Dict[str, int]) -> Dict[str, int]:
    out = dict(defaults)
    if isinstance(raw, dict):
        for key, val in raw.items():
            out[str(key)] = _safe_int(val, defaults.get(str(key), 10))
    return out


def _float_table(raw: Any, defaults: Dict[str, float]) -> Dict[str, float]:
    out = dict(defaults)
    if isinstance(raw, dict):
        for key, val in raw.items():
            if isinstance(val, (int, float)) and not isinstance(val, bool) and val >= 0:
                out[str(key)] = float(val)
    return out


def load_runtime_config(config_path: Optional[Path] = None) -> RuntimeConfig:
    cfg = RuntimeConfig()
    path = config_path or _DEFAULT_CONFIG_PATH
    try:
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    except FileNotFoundError:
        logger.warning("Runtime config file not found; using defaults", extra={"path": str(path)})
        return cfg
    except tomllib.TOMLDecodeError:
        logger.exception("Runtime config parse failed; using defaults", extra={"path": str(path)})
        return cfg
    except Exception:
        logger.exception("Runtime config load failed; using defaults", extra={"path": str(path)})
        return cfg

    ver_raw = _section(raw, "verification")
    dis_raw = _section(raw, "discovery")
    src_raw = _section(raw, "sources")
    v, d, s = cfg.verification, cfg.discovery, cfg.sources

    verification = VerificationConfig(
        early_exit_score=_safe_float(ver_raw.get("early_exit_score"), v.early_exit_score, upper=1.0),
        adapter_timeout_seconds=_safe_float(ver_raw.get("adapter_timeout_seconds"), v.adapter_timeout_seconds),
        cache_ttl_seconds=_safe_int(ver_raw.get("cache_ttl_seconds", v.cache_ttl_seconds), v.cache_ttl_seconds),
        max_suggestions=_safe_int(ver_raw.get("max_suggestions", v.max_suggestions), v.max_suggestions),
        batch_result_ttl_seconds=_safe_int(
            ver_raw.get("batch_result_ttl_seconds", v.batch_result_ttl_seconds), v.batch_result_ttl_seconds
        ),
    )

    discovery = DiscoveryConfig(
        max_papers=_safe_int(dis_raw.get("max_papers", d.max_papers), d.max_papers),
        min_quality=_safe_float(dis_raw.get("min_quality"), d.min_quality, upper=1.0),
        cache_ttl_seconds=_safe_int(dis_raw.get("cache_ttl_seconds", d.cache_ttl_seconds), d.cache_ttl_seconds),
        max_workers=_safe_int(dis_raw.get("max_workers", d.max_workers), d.max_workers),
        adapter_timeout_seconds=_safe_float(dis_raw.get("adapter_timeout_seconds"), d.adapter_timeout_seconds),
        limits=_int_table(dis_raw.get("limits"), DEFAULT_DISCOVERY_LIMITS),
    )

    disabled = src_raw.get("disabled", [])
    if not isinstance(disabled, list):
        disabled = []
    user_agent = src_raw.get("user_agent", s.user_agent)
    if not isinstance(user_agent, str) or not user_agent.strip():
        user_agent = s.user_agent
    sources = SourcesConfig(
        disabled=tuple(str(x).strip() for x in disabled if str(x).strip()),
        user_agent=user_agent.strip(),
        min_interval_seconds=_float_table(src_raw.get("min_interval_seconds"), DEFAULT_MIN_INTERVALS),
    )

    return RuntimeConfig(verification=verification, discovery=discovery, sources=sources)


RUNTIME_CONFIG = load_runtime_config()
