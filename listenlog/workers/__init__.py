"""Background worker exports."""

from .file_worker import FileProcessingWorker, TickSummary, build_file_worker

__all__ = ["FileProcessingWorker", "TickSummary", "build_file_worker"]
