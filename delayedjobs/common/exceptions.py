# delayedjobs/common/exceptions.py


class DelayedJobsException(Exception):
    """Base exception for the delayedjobs library."""

    pass


class JobLoadError(DelayedJobsException):
    """Raised when a job's invocation descriptor cannot be resolved."""

    pass


class ConfigurationError(DelayedJobsException):
    """Raised when JobsOptions holds values the engine cannot run with."""

    pass


class JobNotFoundError(DelayedJobsException):
    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id
