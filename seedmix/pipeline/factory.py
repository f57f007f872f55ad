"""
Pipeline Factory
================

Wires the stage collaborators from a Config: one shared rate limiter and
response cache, both metadata clients, the optional vector index and LLM
client, and the stores the manager persists into.
"""
from __future__ import annotations

import logging
from typing import Optional

from seedmix.config_loader import Config
from seedmix.lastfm_client import LastFMClient
from seedmix.llm_client import create_llm_client
from seedmix.musicbrainz_client import MusicBrainzClient
from seedmix.rate_limiter import LASTFM, MUSICBRAINZ, RateLimiter
from seedmix.response_cache import ResponseCache
from seedmix.vector_index import InMemoryVectorIndex, VectorIndex
from seedmix.pipeline.candidate_generator import CandidateConfig, CandidateGenerator
from seedmix.pipeline.enricher import TrackEnricher
from seedmix.pipeline.explainer import Explainer
from seedmix.pipeline.orchestrator import PipelineManager, PipelineServices
from seedmix.pipeline.resolver import TrackResolver
from seedmix.pipeline.scoring import SimilarityScorer
from seedmix.pipeline.state_store import ArchiveStore, RunRecordStore, StateStore

logger = logging.getLogger(__name__)


def load_vector_index(path: Optional[str]) -> Optional[VectorIndex]:
    """Load the configured vector index; a missing or unreadable file disables it."""
    if not path:
        return None
    try:
        return InMemoryVectorIndex.load(path)
    except (OSError, ValueError) as e:
        logger.warning(f"Vector index unavailable ({path}): {e}")
        return None


def build_services(config: Config, rate_limiter: Optional[RateLimiter] = None) -> PipelineServices:
    """Construct every stage collaborator from config."""
    limiter = rate_limiter or RateLimiter(buckets={
        MUSICBRAINZ: config.rate_limit(MUSICBRAINZ),
        LASTFM: config.rate_limit(LASTFM),
    })
    cache = ResponseCache(config.cache_db_path)
    removed = cache.purge_expired()
    if removed:
        logger.info(f"Purged {removed} expired cache entries from {config.cache_db_path}")
    client_args = dict(
        rate_limiter=limiter,
        cache=cache,
        user_agent=config.user_agent,
        timeout=config.http_timeout_seconds,
    )
    musicbrainz = MusicBrainzClient(**client_args)
    lastfm = LastFMClient(config.lastfm_api_key, **client_args)

    vector_index = load_vector_index(config.vector_index_path)
    enricher = TrackEnricher(lastfm, musicbrainz)

    return PipelineServices(
        resolver=TrackResolver(musicbrainz, lastfm),
        enricher=enricher,
        generator=CandidateGenerator(
            lastfm,
            enricher,
            vector_index=vector_index,
            config=CandidateConfig(
                pool_multiplier=config.candidate_multiplier,
                enrich_workers=config.enrich_workers,
            ),
        ),
        scorer=SimilarityScorer(vector_index=vector_index),
        explainer=Explainer(create_llm_client(config)),
        cache=cache,
    )


def build_manager(config: Config, services: Optional[PipelineServices] = None) -> PipelineManager:
    """Construct the PipelineManager (stores, services) described by config."""
    manager = PipelineManager(
        services=services or build_services(config),
        state_store=StateStore(config.state_db_path),
        run_store=RunRecordStore(config.state_db_path),
        archive=ArchiveStore(config.archive_dir),
        stage_timeout=config.stage_timeout_seconds,
        poll_interval=config.status_poll_interval_seconds,
    )
    logger.info(
        f"Pipeline ready: state db {config.state_db_path}, "
        f"stage timeout {config.stage_timeout_seconds:g}s"
    )
    return manager
