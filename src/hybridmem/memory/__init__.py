"""Memory domain — episodic dialogue memory and semantic concept memory."""

from hybridmem.memory.episodic import EpisodicMemory
from hybridmem.memory.extraction import extract_concepts
from hybridmem.memory.extraction import is_contradiction
from hybridmem.memory.extraction import polarity_of
from hybridmem.memory.semantic import SemanticMemory

__all__ = [
    "EpisodicMemory",
    "SemanticMemory",
    "extract_concepts",
    "is_contradiction",
    "polarity_of",
]
