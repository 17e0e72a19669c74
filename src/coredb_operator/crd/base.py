"""Base classes for CRD specifications."""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CRDCondition(BaseModel):
    """Custom Kubernetes condition."""

    type: str
    status: str  # True, False, Unknown
    reason: str
    message: str
    lastTransitionTime: Optional[datetime] = None


class CRDStatus(BaseModel):
    """Base class for all CRD status objects."""

    model_config = ConfigDict(extra="allow")

    phase: Optional[str] = None
    conditions: List[CRDCondition] = Field(default_factory=list)
    observedGeneration: Optional[int] = None

    def get_condition(self, condition_type):
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def set_condition(self, condition_type, status, reason, message=""):
        """Set a condition, keeping lastTransitionTime unless the status flips."""
        status = "True" if status is True else "False" if status is False else status
        existing = self.get_condition(condition_type)
        if existing is not None and existing.status == status:
            existing.reason = reason
            existing.message = message
            return existing

        condition = CRDCondition(
            type=condition_type,
            status=status,
            reason=reason,
            message=message,
            lastTransitionTime=datetime.now(timezone.utc).replace(microsecond=0),
        )
        self.conditions = [c for c in self.conditions if c.type != condition_type]
        self.conditions.append(condition)
        return condition


class CRDSpec(BaseModel):
    """Base class for all CRD spec objects."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)
