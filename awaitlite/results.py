from typing import Any, Dict

from pydantic import BaseModel, ConfigDict, Field

Row = Dict[str, Any]


class OperationResult(BaseModel):
    """Rows affected and last inserted rowid for one run-type statement."""

    model_config = ConfigDict(frozen=True)

    changes: int = Field(default=0, ge=0)
    last_insert_id: int = 0

    @classmethod
    def from_context(cls, context: Any) -> "OperationResult":
        # Engines that report nothing (context None) count as no change.
        return cls(
            changes=getattr(context, "changes", None) or 0,
            last_insert_id=getattr(context, "last_id", None) or 0,
        )
