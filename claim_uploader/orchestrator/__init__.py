"""Orchestrator package - coordinates the upload workflow."""
from .admission import AdmissionController
from .core import UploadOrchestrator
from .polling import PollOutcome, PollScheduler
from .store import TaskStore

__all__ = [
    "UploadOrchestrator",
    "AdmissionController",
    "PollScheduler",
    "PollOutcome",
    "TaskStore",
]
