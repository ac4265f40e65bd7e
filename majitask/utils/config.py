"""Environment-backed defaults for the task sync core."""

import os


class SyncConfig:
    """Centralized sync configuration.

    Components take explicit constructor arguments; these values are only the
    defaults used when a caller does not pass one.
    """

    API_BASE_URL = os.environ.get("MAJITASK_API_BASE_URL", "http://localhost:3863").rstrip("/")
    ACCESS_TOKEN_KEY = os.environ.get("MAJITASK_ACCESS_TOKEN_KEY", "majitask_access_token")
    LOCAL_STORE_PATH = os.environ.get("MAJITASK_LOCAL_STORE_PATH") or None
    HTTP_TIMEOUT_SECONDS = float(os.environ.get("MAJITASK_HTTP_TIMEOUT_SECONDS", "10"))

    SYNC_INTERVAL_SECONDS = float(os.environ.get("MAJITASK_SYNC_INTERVAL_SECONDS", "60"))
    SYNC_BATCH_LIMIT = int(os.environ.get("MAJITASK_SYNC_BATCH_LIMIT", "1000"))

    RATE_LIMIT_WINDOW_SECONDS = int(os.environ.get("MAJITASK_RATE_LIMIT_WINDOW_SECONDS", "600"))
    RATE_LIMIT_MAX = int(os.environ.get("MAJITASK_RATE_LIMIT_MAX", "100"))
    BULK_LIMIT_WINDOW_SECONDS = int(os.environ.get("MAJITASK_BULK_LIMIT_WINDOW_SECONDS", "3600"))
    BULK_LIMIT_MAX = int(os.environ.get("MAJITASK_BULK_LIMIT_MAX", "5"))

    MIGRATION_MAX_TASKS = int(os.environ.get("MAJITASK_MIGRATION_MAX_TASKS", "1000"))


# Storage keys shared by the local adapter and the sync worker
TASKS_KEY = "majitask_tasks"
COMMENTS_KEY = "majitask_comments"
LAST_SYNC_KEY = "majitask_last_sync"
