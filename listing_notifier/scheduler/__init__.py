"""Periodic execution of the scan and process ticks."""

from .service import PROCESS_JOB_ID, SCAN_JOB_ID, SchedulerService

__all__ = [
    "PROCESS_JOB_ID",
    "SCAN_JOB_ID",
    "SchedulerService",
]
