"""Copies one item (and its file attachments) from a source to destinations."""

import logging
from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import aclosing
from dataclasses import dataclass

from ..events import CopyFile, CopyItem, LogEnd, LogEntry, Logger
from ..transport import ItemSource, PutResult, TransportError
from ..types import ItemRef, ServerInfo, UserRef

logger = logging.getLogger(__name__)


@dataclass
class CopyResult:
    """Outcome counts of one copy() call, per destination."""

    copied: int = 0
    already_present: int = 0
    errors: int = 0


def choose_source(sources: Sequence[ServerInfo]) -> ServerInfo:
    # TODO: choose a random source to spread load across servers.
    return sources[0]


class CopyOperator:
    """Moves item bytes between servers.

    The payload is fetched once from a single source and pushed to each
    destination independently: a failure for one destination is logged and
    never stops the copy to the others.
    """

    def __init__(
        self,
        servers: Mapping[ServerInfo, ItemSource],
        log: Logger,
        copy_files: bool = True,
    ):
        """Initialize the copy operator.

        Args:
            servers: Item source for every configured server.
            log: Receives CopyItem/CopyFile events.
            copy_files: Also copy file attachments of newly copied items.
        """
        self._servers = servers
        self._log = log
        self.copy_files = copy_files

    async def copy(
        self,
        sources: Sequence[ServerInfo],
        destinations: Sequence[ServerInfo],
        user: UserRef,
        item: ItemRef,
    ) -> CopyResult:
        """Copy an item from one of ``sources`` to every destination server.

        Args:
            sources: Servers known to have the item; the first one is used.
            destinations: Servers missing the item. Non-destinations are skipped.
            user: Owner of the item.
            item: The item to copy.

        Returns:
            CopyResult with per-destination counts.
        """
        result = CopyResult()
        destinations = [d for d in destinations if d.is_dest]
        if not destinations:
            return result

        source = choose_source(sources)
        fetch_error = "Could not read item from source"
        try:
            data = await self._servers[source].get_item_bytes(user.id, item.signature)
        except TransportError as e:
            data = None
            fetch_error = f"{fetch_error}: {e}"

        for dest in destinations:
            entry = self._log.start(CopyItem(user, item, source, dest))
            if data is None:
                entry.end(LogEnd.error(fetch_error))
                result.errors += 1
                continue

            try:
                put = await self._servers[dest].put_item(user.id, item.signature, data)
            except TransportError as e:
                entry.end(LogEnd.error(str(e)))
                result.errors += 1
                continue

            if put == PutResult.ALREADY_EXISTS:
                result.already_present += 1
                entry.end(LogEnd.warning("Destination already had this item"))
                continue

            result.copied += 1
            problem = await self._copy_files(source, dest, user, item)
            entry.end(LogEnd.warning(problem) if problem else LogEnd.success())

        return result

    async def _copy_files(
        self,
        source: ServerInfo,
        dest: ServerInfo,
        user: UserRef,
        item: ItemRef,
    ) -> str | None:
        """Copy the attachments of a newly copied item that ``dest`` lacks.

        Returns:
            A warning message if any attachment could not be copied, else None.
        """
        if not self.copy_files:
            return None

        src_server = self._servers[source]
        dest_server = self._servers[dest]
        try:
            attachments = await src_server.list_attachments(user.id, item.signature)
        except TransportError as e:
            return f"Could not list file attachments: {e}"

        failed = 0
        for attachment in attachments:
            try:
                if await dest_server.has_file(user.id, item.signature, attachment.name):
                    continue
            except TransportError as e:
                logger.warning(f"Could not check for {attachment.name} on {dest.label}: {e}")

            entry = self._log.start(
                CopyFile(user, item, attachment.name, attachment.size, source, dest)
            )
            try:
                async with aclosing(
                    src_server.stream_file(user.id, item.signature, attachment.name)
                ) as chunks:
                    await dest_server.put_file(
                        user.id, item.signature, attachment.name, _counted(chunks, entry)
                    )
            except TransportError as e:
                entry.end(LogEnd.error(str(e)))
                failed += 1
                continue
            entry.end(LogEnd.success())

        if failed:
            return f"{failed} of {len(attachments)} file attachments failed to copy"
        return None


async def _counted(chunks: AsyncIterator[bytes], entry: LogEntry) -> AsyncIterator[bytes]:
    """Pass chunks through, reporting progress as they go."""
    async for chunk in chunks:
        entry.bytes_copied(len(chunk))
        yield chunk
