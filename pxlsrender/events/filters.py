"""
Event filter engine.

Builds a single accept/reject test from optional clauses. Clauses compose
by logical AND; with no clause enabled every event passes.

Timestamp bounds are inclusive on both sides: after <= t <= before.
"""

import hashlib
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pxlsrender.events.model import ActionKind, Event, Region


# Raw user keys are this long; anything else is treated as a log hash
USER_KEY_LENGTH = 512

Predicate = Callable[[Event], bool]


class FilterConfig(BaseModel):
    """Enabled filter clauses; unset fields are disabled."""
    model_config = ConfigDict(frozen=True)

    after: Optional[datetime] = None
    before: Optional[datetime] = None
    colors: frozenset[int] = Field(default_factory=frozenset)
    region: Optional[Region] = None
    actions: frozenset[ActionKind] = Field(default_factory=frozenset)
    users: frozenset[str] = Field(default_factory=frozenset)

    @field_validator("after", "before")
    @classmethod
    def _naive_utc(cls, value: Optional[datetime]):
        # Log timestamps are naive UTC
        if value is not None and value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    @field_validator("region", mode="before")
    @classmethod
    def _parse_region(cls, value):
        if value is None:
            return None
        return Region.parse(value)

    @field_validator("actions", mode="before")
    @classmethod
    def _parse_actions(cls, value):
        if value is None:
            return frozenset()
        return frozenset(v if isinstance(v, ActionKind) else ActionKind.parse(str(v)) for v in value)

    @field_validator("colors", "users", mode="before")
    @classmethod
    def _none_is_empty(cls, value):
        return frozenset() if value is None else value

    @property
    def user_hashes(self) -> frozenset[str]:
        return frozenset(u for u in self.users if len(u) != USER_KEY_LENGTH)

    @property
    def user_keys(self) -> frozenset[str]:
        return frozenset(u for u in self.users if len(u) == USER_KEY_LENGTH)

    def describe(self) -> list[str]:
        """Human-readable list of enabled clauses."""
        lines = []
        if self.after is not None:
            lines.append(f"after: {self.after.isoformat()}")
        if self.before is not None:
            lines.append(f"before: {self.before.isoformat()}")
        if self.colors:
            lines.append(f"colors: {sorted(self.colors)}")
        if self.region is not None:
            r = self.region
            lines.append(f"region: ({r.x1},{r.y1})-({r.x2},{r.y2})")
        if self.actions:
            lines.append(f"actions: {sorted(a.short_name for a in self.actions)}")
        if self.users:
            lines.append(f"users: {len(self.users)}")
        return lines


def user_hash_from_key(event: Event, key: str) -> str:
    """Recompute the log's user hash for an event from a raw user key."""
    index = -1 if event.color_index is None else event.color_index
    h = hashlib.sha256()
    h.update(event.format_timestamp().encode("utf8"))
    h.update(b",")
    h.update(str(event.x).encode("utf8"))
    h.update(b",")
    h.update(str(event.y).encode("utf8"))
    h.update(b",")
    h.update(str(index).encode("utf8"))
    h.update(b",")
    h.update(key.encode("utf8"))
    return h.hexdigest()


class EventFilter:
    """Conjunction of the clauses enabled in a FilterConfig."""

    def __init__(self, config: Optional[FilterConfig] = None):
        self.config = config or FilterConfig()
        self._predicates = self._build_predicates(self.config)

    @property
    def is_empty(self) -> bool:
        return not self._predicates

    def __call__(self, event: Event) -> bool:
        return self.keep(event)

    def keep(self, event: Event) -> bool:
        for predicate in self._predicates:
            if not predicate(event):
                return False
        return True

    @staticmethod
    def _build_predicates(cfg: FilterConfig) -> list[Predicate]:
        predicates: list[Predicate] = []

        if cfg.after is not None:
            after = cfg.after
            predicates.append(lambda e: e.timestamp >= after)
        if cfg.before is not None:
            before = cfg.before
            predicates.append(lambda e: e.timestamp <= before)
        if cfg.colors:
            colors = cfg.colors
            # Events without a color never match a color clause
            predicates.append(lambda e: e.color_index is not None and e.color_index in colors)
        if cfg.region is not None:
            region = cfg.region
            predicates.append(lambda e: region.contains(e.x, e.y))
        if cfg.actions:
            actions = cfg.actions
            predicates.append(lambda e: e.action in actions)
        if cfg.users:
            hashes = cfg.user_hashes
            keys = cfg.user_keys

            def match_user(e: Event) -> bool:
                if e.user in hashes:
                    return True
                return any(user_hash_from_key(e, key) == e.user for key in keys)

            predicates.append(match_user)

        return predicates


def filter_events(
    events: Iterable[tuple[int, Event]],
    event_filter: EventFilter,
) -> Iterator[tuple[int, Event]]:
    """Lazily keep the (line, event) pairs accepted by the filter."""
    if event_filter.is_empty:
        yield from events
        return
    for line, event in events:
        if event_filter.keep(event):
            yield line, event


def load_user_file(path: Path | str) -> frozenset[str]:
    """Read a newline-delimited set of user hashes or keys."""
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"User list not found: {path}")
    with open(path, "r", encoding="utf8") as f:
        return frozenset(token for line in f for token in line.split() if token)
