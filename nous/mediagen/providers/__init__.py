from .fal import FalAdapter
from .gemini import GeminiAdapter
from .kie import KieAdapter
from .replicate import ReplicateAdapter
from .wavespeed import WaveSpeedAdapter

__all__ = [
    "FalAdapter",
    "GeminiAdapter",
    "KieAdapter",
    "ReplicateAdapter",
    "WaveSpeedAdapter",
]
