"""Wires the job store, collaborators and handlers into a processor."""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from openai import AsyncOpenAI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from wins_column.config.settings import Settings
from wins_column.jobs.handlers import (
    FetchDiffHandler,
    GenerateSummaryHandler,
    SendEmailHandler,
    WebhookProcessingHandler,
)
from wins_column.jobs.processor import JobProcessor
from wins_column.jobs.workflow import WorkflowComposer
from wins_column.queues.store import JobStore
from wins_column.schemas.jobs import JobProcessingConfig
from wins_column.services.billing import BillingService
from wins_column.services.commits import CommitService
from wins_column.services.emails import EmailTrackingService
from wins_column.services.github import StaticInstallationTokenProvider, github_client_factory
from wins_column.services.interfaces import DiffProviderFactory, InstallationTokenProvider, Mailer, Summarizer
from wins_column.services.mailer import ResendMailer
from wins_column.services.projects import ProjectService
from wins_column.services.summarization import SummarizationService

logger = logging.getLogger(__name__)

PRODUCTION_CONFIG = JobProcessingConfig(
    max_concurrent_jobs=10,
    poll_interval_ms=2000,
    maintenance_interval_ms=60000,
    job_timeout_ms=600000,
    cleanup_completed_after_days=7,
)

DEVELOPMENT_CONFIG = JobProcessingConfig(
    max_concurrent_jobs=3,
    poll_interval_ms=1000,
    maintenance_interval_ms=10000,
    job_timeout_ms=300000,
    cleanup_completed_after_days=1,
)

OVERRIDABLE_FIELDS = ("max_concurrent_jobs", "job_timeout_ms", "poll_interval_ms")


def resolve_processing_config(settings: Settings) -> JobProcessingConfig:
    """Environment preset, then any processor values set explicitly in settings."""
    base = PRODUCTION_CONFIG if settings.environment == "production" else DEVELOPMENT_CONFIG
    overrides = {name: getattr(settings, name) for name in OVERRIDABLE_FIELDS if getattr(settings, name) is not None}
    return JobProcessingConfig.model_validate({**base.model_dump(), **overrides})


@dataclass
class JobSystem:
    store: JobStore
    processor: JobProcessor
    composer: WorkflowComposer
    commits: CommitService
    projects: ProjectService
    billing: BillingService
    email_tracking: EmailTrackingService
    closers: List[Callable] = field(default_factory=list)

    async def aclose(self) -> None:
        await self.processor.stop()
        for close in self.closers:
            await close()


def create_job_system(
    session_maker: async_sessionmaker[AsyncSession],
    settings: Settings,
    github_factory: Optional[DiffProviderFactory] = None,
    token_provider: Optional[InstallationTokenProvider] = None,
    summarizer: Optional[Summarizer] = None,
    mailer: Optional[Mailer] = None,
    config: Optional[JobProcessingConfig] = None,
) -> JobSystem:
    """Build the processor with all four handlers registered.

    Collaborators default to the real GitHub, OpenAI and Resend clients built
    from ``settings``; tests pass fakes.
    """
    config = config or resolve_processing_config(settings)
    store = JobStore(
        session_maker, retry_delay_ms=config.retry_delay_ms, max_retry_delay_ms=config.max_retry_delay_ms
    )
    commits = CommitService(session_maker)
    projects = ProjectService(session_maker)
    billing = BillingService(session_maker)
    email_tracking = EmailTrackingService(session_maker)
    composer = WorkflowComposer(store)
    closers: List[Callable] = []

    if summarizer is None:
        if not settings.openai_api_key:
            logger.warning("OpenAI API key is not configured, summaries will fail until it is set")
        client = AsyncOpenAI(api_key=settings.openai_api_key or "", base_url=settings.openai_base_url)
        summarizer = SummarizationService(client, settings.openai_model, settings.openai_max_tokens)
        closers.append(client.close)
    if mailer is None:
        resend = ResendMailer(settings.resend_api_key, base_url=settings.resend_api_url)
        mailer = resend
        closers.append(resend.aclose)

    processor = JobProcessor(store, config)
    processor.register_handler(
        FetchDiffHandler(
            projects,
            token_provider or StaticInstallationTokenProvider(settings.github_token),
            github_factory or github_client_factory(settings.github_api_url),
        )
    )
    processor.register_handler(GenerateSummaryHandler(store, commits, projects, billing, summarizer))
    processor.register_handler(SendEmailHandler(commits, projects, mailer, email_tracking, settings.email_from))
    processor.register_handler(WebhookProcessingHandler(composer, commits, projects))

    return JobSystem(
        store=store,
        processor=processor,
        composer=composer,
        commits=commits,
        projects=projects,
        billing=billing,
        email_tracking=email_tracking,
        closers=closers,
    )
