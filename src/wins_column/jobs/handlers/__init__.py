from wins_column.jobs.handlers.base import JobHandler
from wins_column.jobs.handlers.fetch_diff import FetchDiffHandler
from wins_column.jobs.handlers.generate_summary import GenerateSummaryHandler
from wins_column.jobs.handlers.send_email import SendEmailHandler
from wins_column.jobs.handlers.webhook_processing import WebhookProcessingHandler

__all__ = [
    "JobHandler",
    "FetchDiffHandler",
    "GenerateSummaryHandler",
    "SendEmailHandler",
    "WebhookProcessingHandler",
]
