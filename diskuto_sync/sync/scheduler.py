"""Top-level sync run: discover every user to sync, then sync them in parallel."""

import asyncio
import logging
from collections.abc import Awaitable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeVar

from ..events import LogEnd, LogEntry, Logger, SyncFeed
from ..transport import ItemSource
from ..types import Full, ServerInfo, SyncTask, UserRef
from .copy import CopyOperator
from .feed import FeedResolver, ProfileResolution
from .merge import sync_user_items

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PARALLEL = 5


class TaskState(Enum):
    """Lifecycle of one user's sync within a run."""

    PENDING = "pending"
    RESOLVING_PROFILE = "resolving_profile"
    SYNCING_ITEMS = "syncing_items"
    SUCCEEDED = "succeeded"
    FAILED = "failed"  # Terminal, not retried within a run


@dataclass
class SyncReport:
    """Result of a whole sync run."""

    users: dict[str, UserRef] = field(default_factory=dict)
    states: dict[str, TaskState] = field(default_factory=dict)
    items_copied: int = 0
    copy_errors: int = 0

    @property
    def failed_users(self) -> list[UserRef]:
        return [
            self.users[uid] for uid, state in self.states.items() if state == TaskState.FAILED
        ]

    @property
    def ok(self) -> bool:
        return not self.failed_users and self.copy_errors == 0


def merge_task(tasks: dict[str, SyncTask], task: SyncTask) -> SyncTask:
    """Add a task to the map, collapsing duplicates by user id.

    The first-seen task keeps its sync mode; names are merged so the first
    non-empty display/known name wins.

    Returns:
        The task stored in the map for this user.
    """
    existing = tasks.get(task.user.id)
    if existing is None:
        tasks[task.user.id] = task
        return task
    existing.user = existing.user.merged(task.user)
    return existing


class Scheduler:
    """Runs a sync for a set of configured users.

    Phase 1 resolves the profiles of the configured users and expands their
    follow lists into a deduplicated task map. Phase 2 syncs the items of
    every task with at most ``parallel`` users in flight at once.
    """

    def __init__(
        self,
        servers: Mapping[ServerInfo, ItemSource],
        log: Logger,
        parallel: int = DEFAULT_PARALLEL,
        copy_files: bool = True,
    ):
        """Initialize the scheduler.

        Args:
            servers: Item source for each configured server, in config order.
            log: Receives progress events.
            parallel: Maximum number of users synced concurrently.
            copy_files: Copy file attachments along with copied items.

        Raises:
            ValueError: If fewer than 2 servers or no destination are given.
        """
        if len(servers) < 2:
            raise ValueError(f"Require 2 servers configured, found {len(servers)}")
        dests = sum(1 for server in servers if server.is_dest)
        if dests == 0:
            raise ValueError("Require at least 1 destination server, found 0")
        if parallel < 1:
            raise ValueError(f"parallel must be at least 1, got {parallel}")

        self.servers = servers
        self.log = log
        self.parallel = parallel
        self.copier = CopyOperator(servers, log, copy_files=copy_files)
        self.feeds = FeedResolver(servers, self.copier, log)

    async def run(self, users: list[SyncTask]) -> SyncReport:
        """Sync every configured user and, where enabled, everyone they follow.

        Args:
            users: One task per directly configured user.

        Returns:
            SyncReport with the final state of every user.
        """
        gate = asyncio.Semaphore(self.parallel)
        report = SyncReport()
        tasks, feeds = await self.discover(users, gate, report)

        for task in tasks.values():
            if isinstance(task.mode, Full) and task.mode.backfill_attachments:
                logger.warning(f"{task.user.label}: backfillAttachments is not supported, ignoring")

        running = {
            uid: asyncio.create_task(self._run_task(task, gate, report))
            for uid, task in tasks.items()
            if report.states[uid] == TaskState.PENDING
        }
        waiters = [
            self._finish_feed(entry, members, running, report)
            for entry, members in feeds
        ]
        await asyncio.gather(*running.values(), *waiters)

        for uid, task in tasks.items():
            report.users[uid] = task.user
        logger.info(
            f"Sync finished: {len(tasks)} users, {report.items_copied} items copied, "
            f"{report.copy_errors} copy errors, {len(report.failed_users)} users failed"
        )
        return report

    async def discover(
        self,
        users: list[SyncTask],
        gate: asyncio.Semaphore,
        report: SyncReport,
    ) -> tuple[dict[str, SyncTask], list[tuple[LogEntry, list[str]]]]:
        """Build the deduplicated task map.

        Configured users are added first so their settings win over ones
        inherited through follow lists.

        Returns:
            The task map (user id -> task) and, for each configured user
            with ``follows`` set, their SyncFeed log entry and the ids of
            the users in their feed.
        """
        tasks: dict[str, SyncTask] = {}
        direct: list[SyncTask] = []
        for task in users:
            stored = merge_task(tasks, task)
            if stored is task:
                direct.append(task)
        for uid, task in tasks.items():
            report.states[uid] = TaskState.PENDING
            report.users[uid] = task.user

        feed_entries = {
            task.user.id: self.log.start(SyncFeed(task.user)) for task in direct if task.follows
        }
        for task in direct:
            report.states[task.user.id] = TaskState.RESOLVING_PROFILE
        resolutions = await asyncio.gather(
            *(self._gated(gate, self.feeds.resolve_profile(task.user)) for task in direct),
            return_exceptions=True,
        )

        feeds: list[tuple[LogEntry, list[str]]] = []
        for task, resolution in zip(direct, resolutions):
            uid = task.user.id
            entry = feed_entries.get(uid)
            if isinstance(resolution, BaseException):
                logger.debug(f"Profile resolution failed for {task.user.label}", exc_info=resolution)
                report.states[uid] = TaskState.FAILED
                if entry is not None:
                    entry.end(LogEnd.error(f"Could not sync feed: {resolution}"))
                continue

            self._apply_profile(task, resolution, report)
            report.states[uid] = TaskState.PENDING

            members = [uid]
            for child in self.feeds.expand(task, resolution.profile):
                stored = merge_task(tasks, child)
                report.states.setdefault(stored.user.id, TaskState.PENDING)
                members.append(stored.user.id)
            if entry is not None:
                feeds.append((entry, members))

        return tasks, feeds

    async def _run_task(
        self,
        task: SyncTask,
        gate: asyncio.Semaphore,
        report: SyncReport,
    ) -> TaskState:
        uid = task.user.id
        async with gate:
            try:
                if not task.profile_resolved:
                    report.states[uid] = TaskState.RESOLVING_PROFILE
                    resolution = await self.feeds.resolve_profile(task.user, required=False)
                    if resolution is not None:
                        self._apply_profile(task, resolution, report)

                report.states[uid] = TaskState.SYNCING_ITEMS
                result = await sync_user_items(
                    task.user, task.mode, self.servers, self.copier, self.log
                )
            except Exception:
                # Already reported through the event log; keep siblings running.
                logger.debug(f"Sync failed for {task.user.label}", exc_info=True)
                report.states[uid] = TaskState.FAILED
                return TaskState.FAILED

        report.items_copied += result.items_copied
        report.copy_errors += result.copy_errors
        report.states[uid] = TaskState.SUCCEEDED
        return TaskState.SUCCEEDED

    async def _finish_feed(
        self,
        entry: LogEntry,
        members: list[str],
        running: dict[str, asyncio.Task],
        report: SyncReport,
    ) -> None:
        await asyncio.gather(*(running[uid] for uid in set(members) if uid in running))
        unique = set(members)
        failed = sum(1 for uid in unique if report.states.get(uid) == TaskState.FAILED)
        if failed:
            entry.end(LogEnd.warning(f"{failed} of {len(unique)} users failed"))
        else:
            entry.end(LogEnd.success())

    @staticmethod
    def _apply_profile(task: SyncTask, resolution: ProfileResolution, report: SyncReport) -> None:
        task.profile_resolved = True
        task.user = task.user.merged(
            UserRef(task.user.id, display_name=resolution.profile.display_name)
        )
        report.items_copied += resolution.copy.copied
        report.copy_errors += resolution.copy.errors

    @staticmethod
    async def _gated(gate: asyncio.Semaphore, work: Awaitable[T]) -> T:
        async with gate:
            return await work
