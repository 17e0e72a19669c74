"""CRD management system for the CoreDB operator."""

from .registry import CRDRegistry
from .base import CRDSpec, CRDStatus, CRDCondition

__all__ = ["CRDRegistry", "CRDSpec", "CRDStatus", "CRDCondition"]
