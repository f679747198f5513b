"""Process-wide pipeline services and their FastAPI dependencies.

The services are built once from settings on first use; tests replace them
with ``app.dependency_overrides[get_services]``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import PipelineConfig, Settings, get_settings
from core.email import build_transport
from dependencies.db import AsyncSessionLocal
from services.ai.model_factory import build_providers
from services.ai.orchestrator import GenerationOrchestrator
from services.delivery.bulk import BulkCampaignService
from services.delivery.queue import DeliveryQueue
from services.interfaces import InMemoryConcernStore, InMemorySubmissionStore
from services.rendering.renderer import ArtifactRenderer
from services.submission_pipeline import SubmissionPipeline


logger = logging.getLogger(__name__)


@dataclass
class PipelineServices:
    config: PipelineConfig
    concerns: InMemoryConcernStore
    records: InMemorySubmissionStore
    renderer: ArtifactRenderer
    queue: DeliveryQueue
    campaigns: BulkCampaignService
    pipeline: SubmissionPipeline


def load_concern_templates(path: str | None) -> dict[str, str]:
    """Read ``{key: full_text}`` from a JSON file; missing path means none."""
    if not path:
        return {}
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Concern template file {path} must hold a JSON object")
    return {str(k): str(v) for k, v in data.items()}


def build_services(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession]
) -> PipelineServices:
    config = PipelineConfig.from_settings(settings)
    concerns = InMemoryConcernStore(load_concern_templates(settings.CONCERN_TEMPLATES_FILE))
    records = InMemorySubmissionStore()
    renderer = ArtifactRenderer(config.render)
    queue = DeliveryQueue(session_factory, build_transport(settings), config.delivery)
    campaigns = BulkCampaignService(session_factory, queue)
    orchestrator = GenerationOrchestrator(build_providers(settings, config.generation), config.generation)
    pipeline = SubmissionPipeline(
        orchestrator=orchestrator,
        renderer=renderer,
        queue=queue,
        concerns=concerns,
        records=records,
        config=config,
    )
    logger.info(
        "Pipeline assembled with %d generation provider(s)", len(orchestrator.providers)
    )
    return PipelineServices(
        config=config,
        concerns=concerns,
        records=records,
        renderer=renderer,
        queue=queue,
        campaigns=campaigns,
        pipeline=pipeline,
    )


_services: PipelineServices | None = None


def get_services() -> PipelineServices:
    global _services
    if _services is None:
        _services = build_services(get_settings(), AsyncSessionLocal)
    return _services


def set_services(services: PipelineServices | None) -> None:
    global _services
    _services = services


Services = Annotated[PipelineServices, Depends(get_services)]
