"""Context variables for structured logging."""

from contextvars import ContextVar
from typing import Dict, Optional

_stage_name: ContextVar[str] = ContextVar("stage_name", default="")
_worker_id: ContextVar[str] = ContextVar("worker_id", default="")
_job_id: ContextVar[str] = ContextVar("job_id", default="")
_package: ContextVar[str] = ContextVar("package", default="")


def set_log_context(
    stage: Optional[str] = None,
    worker_id: Optional[str] = None,
    job_id: Optional[str] = None,
    package: Optional[str] = None,
) -> None:
    if stage is not None:
        _stage_name.set(stage)
    if worker_id is not None:
        _worker_id.set(worker_id)
    if job_id is not None:
        _job_id.set(job_id)
    if package is not None:
        _package.set(package)


def get_log_context() -> Dict[str, str]:
    return {
        "stage": _stage_name.get(),
        "worker_id": _worker_id.get(),
        "job_id": _job_id.get(),
        "package": _package.get(),
    }


def clear_log_context() -> None:
    _stage_name.set("")
    _worker_id.set("")
    _job_id.set("")
    _package.set("")
