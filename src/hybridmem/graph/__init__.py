"""Graph domain — concept-name triples and traversal."""

from hybridmem.graph.extraction import PREDICATES
from hybridmem.graph.extraction import extract_relations
from hybridmem.graph.knowledge import KnowledgeGraph
from hybridmem.graph.knowledge import normalize_node

__all__ = [
    "PREDICATES",
    "KnowledgeGraph",
    "extract_relations",
    "normalize_node",
]
