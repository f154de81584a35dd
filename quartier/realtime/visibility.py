"""
Filtrage de visibilité côté service.

Le store applique ses propres règles d'accès ; on ne fait pas confiance au
flux brut pour autant : toute surface rend une ``VisibleView`` et jamais la
collection brute.
"""
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Tuple

from quartier.realtime.events import Record
from quartier.realtime.store import SyncedCollection


@dataclass(frozen=True)
class Actor:
    """Contexte explicite de l'utilisateur courant, passé à chaque mutation."""
    user_id: str
    community_id: Optional[str] = None
    role: str = "RESIDENT"
    name: str = ""

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(
            user_id=str(user.id),
            community_id=user.community_id,
            role=user.role,
            name=user.full_name,
        )

    @property
    def is_admin(self) -> bool:
        return self.role in ("ADMIN", "GOD")


@dataclass(frozen=True)
class VisibilityRule:
    type_field: str = "type"
    # None : tous les types sont publics
    public_types: Optional[FrozenSet[str]] = frozenset({"PUBLIC"})
    members_field: str = "members"
    owner_fields: Tuple[str, ...] = ("creator_id", "initiator_id")

    def allows(self, record: Record, actor: Actor) -> bool:
        if self.public_types is None or record.get(self.type_field) in self.public_types:
            return True
        members = record.get(self.members_field) or []
        if actor.user_id in [str(m) for m in members]:
            return True
        return any(str(record.get(f)) == actor.user_id for f in self.owner_fields if record.get(f) is not None)


CHANNEL_RULE = VisibilityRule()
PUBLIC_RULE = VisibilityRule(public_types=None)


def visible_records(records: List[Record], actor: Actor, rule: VisibilityRule = CHANNEL_RULE) -> List[Record]:
    return [r for r in records if rule.allows(r, actor)]


class VisibleView:
    """Sous-ensemble visible d'un snapshot, recalculé quand la source ou l'acteur change."""

    def __init__(self, snapshot: SyncedCollection, actor: Actor, rule: VisibilityRule = CHANNEL_RULE):
        self.snapshot = snapshot
        self.rule = rule
        self._actor = actor
        self._cache_key = None
        self._cache: List[Record] = []

    @property
    def actor(self) -> Actor:
        return self._actor

    @actor.setter
    def actor(self, actor: Actor) -> None:
        self._actor = actor

    @property
    def records(self) -> List[Record]:
        key = (self.snapshot.revision, id(self.snapshot), self._actor)
        if key != self._cache_key:
            self._cache = visible_records(self.snapshot.records, self._actor, self.rule)
            self._cache_key = key
        return list(self._cache)
