"""
Repair Service

Single-flight auto-repair of API keys and video auth tokens.
"""

from .coordinator import AutoRepairCoordinator, RepairKind, RepairState, RepairStatus

__all__ = [
    "AutoRepairCoordinator",
    "RepairKind",
    "RepairState",
    "RepairStatus",
]
