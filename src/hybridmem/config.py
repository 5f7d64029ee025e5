"""Application configuration dataclasses.

Frozen dataclasses with sensible defaults for each subsystem.
No env-var loading or YAML parsing — just plain defaults that can
be overridden at construction time.
"""

from __future__ import annotations

from dataclasses import dataclass
from dataclasses import field


def _default_importance() -> dict[str, float]:
    return {
        "fact": 0.7,
        "preference": 0.6,
        "rule": 0.8,
        "skill": 0.6,
        "goal": 0.7,
        "general": 0.4,
    }


def _default_decay_rates() -> dict[str, float]:
    # Confidence lost per decay period (default period: one day).
    return {
        "fact": 0.01,
        "preference": 0.02,
        "rule": 0.005,
        "skill": 0.01,
        "goal": 0.02,
        "general": 0.05,
    }


@dataclass(frozen=True)
class VectorStoreConfig:
    """Tier capacities and search tuning for one vector store partition."""

    hot_capacity: int = 1000
    warm_capacity: int = 10000
    # Cold entries are consulted only when fewer than top_k hot/warm hits
    # reach this similarity.
    cold_relevance_floor: float = 0.3
    cache_size: int = 4096


@dataclass(frozen=True)
class EpisodicConfig:
    """Session handling and recall formatting for dialogue memory."""

    persona_name: str = "assistant"
    max_sessions: int = 100
    recall_min_similarity: float = 0.0
    snippet_max_chars: int = 200
    context_max_turns: int = 5
    context_max_chars: int = 2000


@dataclass(frozen=True)
class SemanticConfig:
    """Deduplication, contradiction and reinforcement parameters."""

    dedup_threshold: float = 0.92
    contradiction_threshold: float = 0.75
    reinforcement_step: float = 0.1
    baseline_confidence: float = 0.5
    importance_step: float = 0.05
    max_extracted_per_text: int = 8
    max_extraction_chars: int = 2000
    default_importance: dict[str, float] = field(default_factory=_default_importance)


@dataclass(frozen=True)
class GraphConfig:
    """Knowledge-graph combine rule and traversal bounds."""

    combine_rule: str = "max"  # "max" or "mean"
    default_confidence: float = 0.7
    max_depth: int = 2
    max_relations_per_text: int = 8


@dataclass(frozen=True)
class DecayConfig:
    """Temporal decay policy for semantic concepts."""

    period_seconds: float = 86400.0
    rates: dict[str, float] = field(default_factory=_default_decay_rates)
    grace_period_seconds: float = 7 * 86400.0
    prune_max_usage_count: int = 1
    interval_seconds: float = 3600.0


@dataclass(frozen=True)
class PersistenceConfig:
    """On-disk chunking and save cadence."""

    chunk_size: int = 1000
    verify_checksums: bool = True
    auto_save_every: int = 10
    compaction_min_live_ratio: float = 0.5


@dataclass(frozen=True)
class AuditConfig:
    """Settings for the JSONL audit logger."""

    file_path: str = "hybridmem_audit.jsonl"
    enabled: bool = True


@dataclass(frozen=True)
class MemoryConfig:
    """Aggregate configuration for the hybrid memory engine."""

    vector: VectorStoreConfig = field(default_factory=VectorStoreConfig)
    episodic: EpisodicConfig = field(default_factory=EpisodicConfig)
    semantic: SemanticConfig = field(default_factory=SemanticConfig)
    graph: GraphConfig = field(default_factory=GraphConfig)
    decay: DecayConfig = field(default_factory=DecayConfig)
    persistence: PersistenceConfig = field(default_factory=PersistenceConfig)
