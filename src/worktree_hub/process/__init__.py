"""External process orchestration utilities."""

from .runner import CommandSpec, FakeProcessRunner, ProcessHandle, ProcessResult, ProcessRunner, SpawnCallback

__all__ = [
    "CommandSpec",
    "FakeProcessRunner",
    "ProcessHandle",
    "ProcessResult",
    "ProcessRunner",
    "SpawnCallback",
]
