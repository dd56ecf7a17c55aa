"""Path resolution from targets to hop candidates."""

from .config import ResolverConfig
from .models import AlbTarget, CandidateSource, FallbackReason, HopCandidate, Resolution
from .resolver import PathResolver

__all__ = [
    "PathResolver",
    "ResolverConfig",
    "AlbTarget",
    "CandidateSource",
    "FallbackReason",
    "HopCandidate",
    "Resolution",
]
