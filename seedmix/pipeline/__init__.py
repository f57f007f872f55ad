"""Playlist generation pipeline: stages, orchestration and persistence."""

from .candidate_generator import CandidateConfig, CandidateGenerator
from .curator import curate
from .enricher import TrackEnricher
from .explainer import Explainer
from .orchestrator import PipelineManager, PipelineRun, PipelineServices
from .resolver import TrackResolver
from .scoring import SimilarityScorer
from .state_store import ArchiveStore, RunRecordStore, StateStore

__all__ = [
    "ArchiveStore",
    "CandidateConfig",
    "CandidateGenerator",
    "Explainer",
    "PipelineManager",
    "PipelineRun",
    "PipelineServices",
    "RunRecordStore",
    "SimilarityScorer",
    "StateStore",
    "TrackEnricher",
    "TrackResolver",
    "curate",
]
