"""Partition flash orchestration.

This module handles:
- Resolving selected partitions from files, scripts and OTA payloads
- Planning writes per device mode and A/B slot
- Supervising mode transitions and device reconnects
- Progress and throughput tracking
- Post-flash policies (FRP erase, data wipe, reboot)

Device I/O goes through the DeviceLink / ImageExtractor collaborators;
the wire protocol and payload format live outside this package.
"""

from partflash.flash.errors import (
    EraseError,
    ExtractionError,
    FlashAbortedError,
    FlashError,
    FlashServiceError,
    MissingImageError,
    ReconnectTimeoutError,
    ResolveError,
    SessionBusyError,
    TransitionError,
)
from partflash.flash.link import (
    AuthMaterial,
    AuthMaterialProvider,
    BootloaderVariableProbe,
    CancellationToken,
    DeviceHandle,
    DeviceLink,
    ImageExtractor,
    PlatformProbe,
)
from partflash.flash.planner import ExecutionPlan, FlashPlanner, PlannedStep
from partflash.flash.postflash import PostFlashPolicyExecutor
from partflash.flash.progress import ProgressAggregator
from partflash.flash.resolver import (
    FlashUnit,
    PartitionSourceResolver,
    ResolveResult,
    SelectionItem,
)
from partflash.flash.session import FlashSession, SessionController, StepRecord
from partflash.flash.supervisor import DeviceModeSupervisor

__all__ = [
    # Errors
    "EraseError",
    "ExtractionError",
    "FlashAbortedError",
    "FlashError",
    "FlashServiceError",
    "MissingImageError",
    "ReconnectTimeoutError",
    "ResolveError",
    "SessionBusyError",
    "TransitionError",
    # Collaborators
    "AuthMaterial",
    "AuthMaterialProvider",
    "BootloaderVariableProbe",
    "CancellationToken",
    "DeviceHandle",
    "DeviceLink",
    "ImageExtractor",
    "PlatformProbe",
    # Resolver
    "FlashUnit",
    "PartitionSourceResolver",
    "ResolveResult",
    "SelectionItem",
    # Planner
    "ExecutionPlan",
    "FlashPlanner",
    "PlannedStep",
    # Engine
    "DeviceModeSupervisor",
    "FlashSession",
    "PostFlashPolicyExecutor",
    "ProgressAggregator",
    "SessionController",
    "StepRecord",
]
