"""Runtime module for spawning processes and reaping them.

This module provides the spawned process handle, the gate that orders the
spawn call before the reaper's wait, and the native layer the two run on.
"""

from __future__ import annotations

from .bootstrap import (
    NativeRuntime,
    get_library_load_error,
    get_runtime,
    is_library_loaded,
)
from .gate import Gate
from .native import NativeLayer, PosixNativeLayer, SpawnResult, WAIT_STATUS_UNAVAILABLE
from .process import SpawnedProcess, spawn

__all__ = [
    "Gate",
    "NativeLayer",
    "NativeRuntime",
    "PosixNativeLayer",
    "SpawnResult",
    "SpawnedProcess",
    "WAIT_STATUS_UNAVAILABLE",
    "get_library_load_error",
    "get_runtime",
    "is_library_loaded",
    "spawn",
]
