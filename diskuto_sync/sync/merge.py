"""Multi-way merge over per-server item streams.

Every server reports a user's items newest first. Repeatedly taking the
newest head across all servers (the "tip") finds, in order, each item that
some servers have and others are missing, so it can be copied where it is
needed. Consuming heads front to back means tips never increase, which is
what lets ``Latest`` mode stop after exactly the N most recent items.
"""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from ..events import LogEnd, Logger, SyncUserItems
from ..ordering import item_key
from ..transport import ItemSource
from ..types import ItemRef, ServerInfo, SyncMode, UserRef
from .copy import CopyOperator, CopyResult
from .cursor import PeekableCursor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CursorState:
    """The next unreconciled item of one server, or None if it has no more."""

    server: ServerInfo
    head: ItemRef | None


@dataclass(frozen=True)
class MergeStep:
    """One reconciliation: copy ``item`` and advance the cursors that had it."""

    item: ItemRef
    sources: list[ServerInfo]  # Servers that have the item, in config order
    destinations: list[ServerInfo]  # Destination servers missing the item
    advance: list[int]  # Indexes of the cursor states that had the item


def plan_next(states: Sequence[CursorState]) -> MergeStep | None:
    """Pick the newest unreconciled item across all servers.

    Args:
        states: Current head of each server's stream.

    Returns:
        The next MergeStep, or None when every stream is exhausted.

    Raises:
        RuntimeError: If no stream holds the selected tip (a logic error).
    """
    heads = [s.head for s in states if s.head is not None]
    if not heads:
        return None

    tip = max(heads, key=item_key)
    matches = [i for i, s in enumerate(states) if s.head == tip]
    if not matches:
        raise RuntimeError("coding logic error: can not find next Item")

    others = [s.server for i, s in enumerate(states) if i not in matches]
    return MergeStep(
        item=tip,
        sources=[states[i].server for i in matches],
        destinations=[server for server in others if server.is_dest],
        advance=matches,
    )


@dataclass
class UserSyncResult:
    """Totals for one user's item sync."""

    items_seen: int = 0
    items_copied: int = 0
    copy_errors: int = 0

    def add(self, copy: CopyResult) -> None:
        self.items_copied += copy.copied
        self.copy_errors += copy.errors


async def sync_user_items(
    user: UserRef,
    mode: SyncMode,
    servers: Mapping[ServerInfo, ItemSource],
    copier: CopyOperator,
    log: Logger,
) -> UserSyncResult:
    """Reconcile one user's items across all servers, newest first.

    Args:
        user: The user to sync.
        mode: Latest (stop after N items) or Full (walk everything).
        servers: Every configured server, in config order.
        copier: Copies missing items to destinations.
        log: Receives a SyncUserItems event for the whole loop.

    Returns:
        UserSyncResult with counts for this user.

    Raises:
        TransportError: If a server's item list could not be read.
    """
    entry = log.start(SyncUserItems(user, mode.max_count))
    result = UserSyncResult()
    cursors = [
        (server, PeekableCursor(source.get_user_items(user.id)))
        for server, source in servers.items()
    ]

    try:
        while mode.keep_going(result.items_seen):
            heads = await asyncio.gather(
                *(cursor.peek() for _, cursor in cursors), return_exceptions=True
            )
            for head in heads:
                if isinstance(head, BaseException):
                    raise head

            step = plan_next([CursorState(server, head) for (server, _), head in zip(cursors, heads)])
            if step is None:
                # All servers have finished giving us items.
                break

            result.add(await copier.copy(step.sources, step.destinations, user, step.item))
            for index in step.advance:
                cursors[index][1].advance()

            result.items_seen += 1
            entry.increment_progress()
    except Exception as e:
        entry.end(LogEnd.error(f"Item sync failed: {e}"))
        raise
    finally:
        for _, cursor in cursors:
            await cursor.close()

    logger.debug(
        f"{user.label}: {result.items_seen} items reconciled, "
        f"{result.items_copied} copied, {result.copy_errors} errors"
    )
    if result.copy_errors:
        entry.end(LogEnd.warning(f"{result.copy_errors} item copies failed"))
    else:
        entry.end(LogEnd.success())
    return result
