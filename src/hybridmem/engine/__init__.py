"""Engine domain — the HybridMemory facade and temporal decay."""

from hybridmem.engine.decay import DecayScheduler
from hybridmem.engine.decay import TemporalDecay
from hybridmem.engine.hybrid import HybridMemory

__all__ = [
    "DecayScheduler",
    "HybridMemory",
    "TemporalDecay",
]
