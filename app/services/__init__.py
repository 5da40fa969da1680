"""
app/services package marker.
"""

from app.services.feature_flags import (
    FeatureDisabledError,
    FeatureFlag,
    FeatureFlagService,
    get_feature_flag_service,
)
from app.services.task_queue import TaskQueue, TaskRunSummary, get_task_queue

__all__ = [
    "FeatureDisabledError",
    "FeatureFlag",
    "FeatureFlagService",
    "get_feature_flag_service",
    "TaskQueue",
    "TaskRunSummary",
    "get_task_queue",
]
