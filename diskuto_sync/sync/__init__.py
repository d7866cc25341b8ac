"""The replication engine.

- PeekableCursor: one-item lookahead over a server's item stream
- plan_next / sync_user_items: multi-way merge that finds and fixes gaps
- CopyOperator: copies an item (and attachments) to destination servers
- FeedResolver: syncs profiles and expands follow lists
- Scheduler: dedups users and runs them with bounded concurrency
"""

from .copy import CopyOperator, CopyResult
from .cursor import PeekableCursor
from .feed import FeedResolver, ProfileNotFoundError, ProfileResolution
from .merge import CursorState, MergeStep, UserSyncResult, plan_next, sync_user_items
from .scheduler import Scheduler, SyncReport, TaskState, merge_task

__all__ = [
    "CopyOperator",
    "CopyResult",
    "PeekableCursor",
    "FeedResolver",
    "ProfileNotFoundError",
    "ProfileResolution",
    "CursorState",
    "MergeStep",
    "UserSyncResult",
    "plan_next",
    "sync_user_items",
    "Scheduler",
    "SyncReport",
    "TaskState",
    "merge_task",
]
