from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from ..core.enums import AlignmentState
from ..promotion.domain import PromotionOutcome


class AlignmentResult(BaseModel):
    """What the alignment engine observed and did in one cycle."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    state: AlignmentState
    declared_primary: str | None = None
    upstream: str | None = None
    promotion: PromotionOutcome | None = Field(default=None, description="Set when the gate was invoked")
    requires_intervention: bool = Field(default=False)
    detail: str | None = None

    @property
    def acted(self) -> bool:
        return self.state in (AlignmentState.RECOVERING, AlignmentState.TIMELINE_CONFLICT) or (
            self.promotion is not None
        )
