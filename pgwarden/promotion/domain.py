from __future__ import annotations

from typing import Self

from pydantic import BaseModel, ConfigDict, Field

from ..core.enums import RefusalReason


class PromotionOutcome(BaseModel):
    """Result of one promotion attempt: ``Promoted`` or ``Refused(reason)``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    node: str
    promoted: bool
    reason: RefusalReason | None = Field(default=None, description="Set only when refused")
    detail: str | None = Field(default=None)
    overridden: bool = Field(default=False, description="Promoted through the manual override marker")

    @classmethod
    def success(cls: type[Self], node: str, *, overridden: bool = False, detail: str | None = None) -> Self:
        return cls(node=node, promoted=True, overridden=overridden, detail=detail)

    @classmethod
    def refused(cls: type[Self], node: str, reason: RefusalReason, detail: str | None = None) -> Self:
        return cls(node=node, promoted=False, reason=reason, detail=detail)

    def __str__(self) -> str:
        if self.promoted:
            return "Promoted(override)" if self.overridden else "Promoted"
        return f"Refused({self.reason})"


class Candidate(BaseModel):
    """A visible standby taking part in lag arbitration."""

    model_config = ConfigDict(frozen=True)

    name: str
    node_id: int | None = None
    order: int = Field(description="Position in the topology report")
    lag_seconds: int | None = None
