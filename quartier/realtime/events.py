from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

# Enregistrement brut d'une collection : toujours un champ "id"
Record = Dict[str, Any]


class ChangeType(str, Enum):
    INSERTED = "INSERT"
    UPDATED = "UPDATE"
    DELETED = "DELETE"


class ChangeEvent(BaseModel):
    collection: str
    type: ChangeType
    record: Optional[Record] = None
    identity: Optional[str] = None
    scope: Optional[str] = None

    @property
    def record_id(self) -> Optional[str]:
        if self.identity is not None:
            return self.identity
        if self.record is not None and self.record.get("id") is not None:
            return str(self.record["id"])
        return None

    @classmethod
    def inserted(cls, collection: str, record: Record, scope_field: str = "community_id") -> "ChangeEvent":
        return cls(collection=collection, type=ChangeType.INSERTED, record=record,
                   identity=str(record["id"]), scope=record.get(scope_field))

    @classmethod
    def updated(cls, collection: str, record: Record, scope_field: str = "community_id") -> "ChangeEvent":
        return cls(collection=collection, type=ChangeType.UPDATED, record=record,
                   identity=str(record["id"]), scope=record.get(scope_field))

    @classmethod
    def deleted(cls, collection: str, identity: str) -> "ChangeEvent":
        return cls(collection=collection, type=ChangeType.DELETED, identity=str(identity))


# ===========================
# WEBSOCKETS
# ===========================
class WebSocketMessage(BaseModel):
    type: str
    data: dict
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
