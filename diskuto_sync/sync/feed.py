"""Profile resolution and feed expansion."""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from ..events import LogEnd, Logger, SyncProfile
from ..transport import ItemSource, TransportError
from ..types import Profile, ServerInfo, SyncTask, UserRef
from .copy import CopyOperator, CopyResult
from .merge import CursorState, plan_next

logger = logging.getLogger(__name__)


class ProfileNotFoundError(LookupError):
    """No configured server has a profile for the user."""


@dataclass
class ProfileResolution:
    """The newest profile found for a user, and what it took to spread it."""

    profile: Profile
    copy: CopyResult
    unreachable: list[ServerInfo] = field(default_factory=list)


class FeedResolver:
    """Brings a user's profile up to date everywhere and reads their follows.

    The profile is treated as a single-item merge: servers holding the
    newest profile are sources, the rest are destinations.
    """

    def __init__(
        self,
        servers: Mapping[ServerInfo, ItemSource],
        copier: CopyOperator,
        log: Logger,
    ):
        self._servers = servers
        self._copier = copier
        self._log = log

    async def resolve_profile(self, user: UserRef, required: bool = True) -> ProfileResolution | None:
        """Fetch a user's profile from every server and sync the newest one.

        Args:
            user: The user whose profile to resolve.
            required: If False, a missing profile is only a warning.

        Returns:
            ProfileResolution, or None if no server has a profile and
            ``required`` is False.

        Raises:
            ProfileNotFoundError: If no server has a profile and ``required``.
        """
        entry = self._log.start(SyncProfile(user))
        try:
            fetched = await asyncio.gather(
                *(self._fetch(server, source, user) for server, source in self._servers.items())
            )
            unreachable = [server for server, _, failed in fetched if failed]
            states = [
                CursorState(server, profile.item if profile else None)
                for server, profile, _ in fetched
            ]

            step = plan_next(states)
            if step is None:
                msg = f"Couldn't find user profile: {user.label}"
                if required:
                    entry.end(LogEnd.error(msg))
                    raise ProfileNotFoundError(msg)
                entry.end(LogEnd.warning(msg))
                return None

            profile = fetched[step.advance[0]][1]
            copy = await self._copier.copy(
                step.sources,
                [d for d in step.destinations if d not in unreachable],
                user,
                step.item,
            )
        except ProfileNotFoundError:
            raise
        except Exception as e:
            entry.end(LogEnd.error(f"Profile sync failed: {e}"))
            raise

        if unreachable:
            names = ", ".join(server.label for server in unreachable)
            entry.end(LogEnd.warning(f"Could not fetch profile from: {names}"))
        elif copy.errors:
            entry.end(LogEnd.warning("Could not copy the latest profile everywhere"))
        else:
            entry.end(LogEnd.success())
        return ProfileResolution(profile, copy, unreachable)

    async def _fetch(
        self,
        server: ServerInfo,
        source: ItemSource,
        user: UserRef,
    ) -> tuple[ServerInfo, Profile | None, bool]:
        try:
            return server, await source.get_profile(user.id), False
        except TransportError as e:
            logger.warning(f"Could not fetch profile for {user.label} from {server.label}: {e}")
            return server, None, True

    @staticmethod
    def expand(task: SyncTask, profile: Profile) -> list[SyncTask]:
        """Create a task for every user in the profile's follow list.

        Only applies when the task has ``follows`` set. Followed users
        inherit the parent's sync mode and are labelled with the name the
        follower gave them.
        """
        if not task.follows:
            return []
        return [
            SyncTask(
                user=UserRef(follow.user_id, known_name=follow.display_name),
                mode=task.mode,
            )
            for follow in profile.follows
        ]
