"""Core data types shared by the sync engine, transports and loggers."""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class ServerInfo:
    """A server endpoint that takes part in a sync run."""

    url: str
    name: str | None = None
    is_dest: bool = False  # Copied items are only written to destinations

    @property
    def label(self) -> str:
        """Short name for log output."""
        return self.name or self.url


@dataclass(frozen=True)
class UserRef:
    """A user whose items are being synchronized.

    Identity is by ``id`` only. The names are advisory and only used for
    log output.
    """

    id: str
    display_name: str | None = None  # Self-declared, from the user's profile
    known_name: str | None = None  # How a follower (or the config) names them

    @property
    def label(self) -> str:
        """Preferred name for log output."""
        return self.known_name or self.display_name or self.id

    def merged(self, other: "UserRef") -> "UserRef":
        """Combine names from another reference to the same user.

        The first non-empty value of each name wins.

        Args:
            other: Another reference with the same id.

        Returns:
            A new UserRef with merged names.
        """
        return UserRef(
            id=self.id,
            display_name=self.display_name or other.display_name,
            known_name=self.known_name or other.known_name,
        )


@dataclass(frozen=True)
class ItemRef:
    """Reference to one item in a user's log."""

    timestamp_ms_utc: int
    signature: bytes

    @property
    def signature_hex(self) -> str:
        return self.signature.hex()

    @property
    def short_signature(self) -> str:
        return self.signature_hex[:6] + "…"


@dataclass(frozen=True)
class Latest:
    """Sync at most ``count`` of the most recent items."""

    count: int = 50

    @property
    def max_count(self) -> int | None:
        return self.count

    def keep_going(self, synced: int) -> bool:
        return synced < self.count


@dataclass(frozen=True)
class Full:
    """Sync the user's entire item history."""

    backfill_attachments: bool = False

    @property
    def max_count(self) -> int | None:
        return None

    def keep_going(self, synced: int) -> bool:
        return True


SyncMode = Latest | Full


@dataclass
class SyncTask:
    """The unit of work scheduled per unique user."""

    user: UserRef
    mode: SyncMode = field(default_factory=Latest)
    follows: bool = False
    profile_resolved: bool = False


@dataclass(frozen=True)
class Follow:
    """An entry in a profile's follow list."""

    user_id: str
    display_name: str | None = None


@dataclass(frozen=True)
class Profile:
    """A user's profile item, as reported by one server."""

    item: ItemRef
    display_name: str | None = None
    follows: tuple[Follow, ...] = ()


@dataclass(frozen=True)
class Attachment:
    """A file attached to an item."""

    name: str
    size: int
