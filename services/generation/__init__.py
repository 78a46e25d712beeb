"""
Generation Service

Single call surface for text, image, speech and video generation, plus the
collaborators it reports to (activity log, webhook, history, usage).
"""

from .activity_log import (
    ActivityLog,
    ActivityRecord,
    ActivityRecorder,
    ActivityStatus,
    InMemoryActivityLog,
    PostgresActivityLog,
)
from .error_boundary import ErrorBoundary
from .notifications import (
    HistoryStore,
    InMemoryHistoryStore,
    PostgresUsageTracker,
    ResultType,
    UsageTracker,
    WebhookNotifier,
)
from .orchestrator import ComposeResult, GenerationOrchestrator, VideoGenerationResult
from .video_job import (
    GenerationJob,
    VideoJobRunner,
    VideoJobState,
    extract_thumbnail_url,
    extract_video_url,
    is_operation_completed,
)

__all__ = [
    "ActivityLog",
    "ActivityRecord",
    "ActivityRecorder",
    "ActivityStatus",
    "InMemoryActivityLog",
    "PostgresActivityLog",
    "ErrorBoundary",
    "HistoryStore",
    "InMemoryHistoryStore",
    "PostgresUsageTracker",
    "ResultType",
    "UsageTracker",
    "WebhookNotifier",
    "ComposeResult",
    "GenerationOrchestrator",
    "VideoGenerationResult",
    "GenerationJob",
    "VideoJobRunner",
    "VideoJobState",
    "extract_thumbnail_url",
    "extract_video_url",
    "is_operation_completed",
]
