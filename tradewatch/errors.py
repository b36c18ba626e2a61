# tradewatch/errors.py
"""Exception taxonomy.

Job-management errors (`JobError` subclasses) are raised synchronously to the
caller of the registry. Workflow errors (`WorkflowError` subclasses) are raised
by the provider client, the capture stage and the dispatcher, and are caught
and logged by the orchestrator so they never escape a scheduled trigger.
"""


class ConfigError(RuntimeError):
    """Required configuration is missing or malformed."""


class StoreError(RuntimeError):
    """The durable job store could not be read or written."""


class JobError(Exception):
    def __init__(self, job_id, message):
        super().__init__(message)
        self.job_id = job_id


class InvalidSchedule(JobError):
    def __init__(self, job_id, schedule, reason=""):
        msg = f"Invalid schedule {schedule!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(job_id, msg)
        self.schedule = schedule


class DuplicateJobId(JobError):
    def __init__(self, job_id):
        super().__init__(job_id, f"Job {job_id} already exists")


class JobNotFound(JobError):
    def __init__(self, job_id):
        super().__init__(job_id, f"Job {job_id} not found")


class WorkflowError(Exception):
    pass


class ProviderError(WorkflowError):
    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class CaptureError(WorkflowError):
    def __init__(self, item_id, message):
        prefix = f"Capture failed for item {item_id}" if item_id is not None else "Capture failed"
        super().__init__(f"{prefix}: {message}")
        self.item_id = item_id


class DeliveryError(WorkflowError):
    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status
