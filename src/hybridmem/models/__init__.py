"""Models domain — pydantic records for entries, sessions, concepts, triples."""

from hybridmem.models.common import new_id
from hybridmem.models.common import normalize_name
from hybridmem.models.common import utcnow
from hybridmem.models.concepts import Concept
from hybridmem.models.concepts import ConceptCandidate
from hybridmem.models.concepts import ConceptCategory
from hybridmem.models.concepts import ConceptSource
from hybridmem.models.concepts import Polarity
from hybridmem.models.entries import EntryKind
from hybridmem.models.entries import EpisodicKind
from hybridmem.models.entries import MemoryEntry
from hybridmem.models.entries import SemanticKind
from hybridmem.models.entries import Tier
from hybridmem.models.episodes import Session
from hybridmem.models.episodes import Turn
from hybridmem.models.graph import Triple
from hybridmem.models.schemas import AddConceptResult
from hybridmem.models.schemas import CategoryDecayStats
from hybridmem.models.schemas import CleanupReport
from hybridmem.models.schemas import ConceptHit
from hybridmem.models.schemas import ConceptOutcome
from hybridmem.models.schemas import ConceptToolResult
from hybridmem.models.schemas import DecayReport
from hybridmem.models.schemas import DecayedConcept
from hybridmem.models.schemas import EpisodeHit
from hybridmem.models.schemas import ExchangeInput
from hybridmem.models.schemas import ExchangeResult
from hybridmem.models.schemas import ImportReport
from hybridmem.models.schemas import LoadReport
from hybridmem.models.schemas import MemoryContext
from hybridmem.models.schemas import MemoryExport
from hybridmem.models.schemas import MemoryStats
from hybridmem.models.schemas import RecallResult
from hybridmem.models.schemas import RelationOutcome
from hybridmem.models.schemas import RelationResult
from hybridmem.models.schemas import SaveResult
from hybridmem.models.schemas import SessionResult
from hybridmem.models.schemas import TierOccupancy

__all__ = [
    "AddConceptResult",
    "CategoryDecayStats",
    "CleanupReport",
    "Concept",
    "ConceptCandidate",
    "ConceptCategory",
    "ConceptHit",
    "ConceptOutcome",
    "ConceptToolResult",
    "ConceptSource",
    "DecayReport",
    "DecayedConcept",
    "EntryKind",
    "EpisodeHit",
    "ExchangeInput",
    "ExchangeResult",
    "ImportReport",
    "EpisodicKind",
    "LoadReport",
    "MemoryContext",
    "MemoryExport",
    "MemoryEntry",
    "MemoryStats",
    "RecallResult",
    "Polarity",
    "RelationOutcome",
    "RelationResult",
    "SaveResult",
    "SemanticKind",
    "Session",
    "SessionResult",
    "Tier",
    "TierOccupancy",
    "Triple",
    "Turn",
    "new_id",
    "normalize_name",
    "utcnow",
]
