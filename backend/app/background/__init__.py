from .runner import Job, JobRunner, JobStatus

default_job_runner = JobRunner()

__all__ = ["Job", "JobRunner", "JobStatus", "default_job_runner"]
