"""Job-related dashboard routes."""
from typing import Any, Dict

from litestar import Controller, get, post
from litestar.exceptions import NotFoundException
from litestar.params import Parameter

from delayedjobs.client import BackgroundJobClient
from delayedjobs.common.exceptions import JobNotFoundError
from delayedjobs.common.job import Job
from delayedjobs.common.states import ALL_STATES


def job_to_dict(job: Job) -> Dict[str, Any]:
    return {
        "id": job.id,
        "state": job.state_name,
        "retries": job.retries,
        "added": job.added.isoformat(),
        "due": job.due.isoformat() if job.due else None,
        "data": job.data,
    }


class JobsController(Controller):
    path = "/jobs"

    @get("/{state_name:str}", sync_to_thread=True)
    def list_jobs_by_state(
        self,
        client: BackgroundJobClient,
        state_name: str,
        page: int = Parameter(default=1, ge=1),
    ) -> Dict[str, Any]:
        if state_name not in ALL_STATES:
            raise NotFoundException(f"Unknown state '{state_name}'")
        jobs = client.get_jobs_by_state(state_name, page=page)
        return {
            "state": state_name,
            "page": page,
            "jobs": [job_to_dict(job) for job in jobs],
        }

    @get("/details/{job_id:str}", sync_to_thread=True)
    def job_details(self, client: BackgroundJobClient, job_id: str) -> Dict[str, Any]:
        job = client.get_job_details(job_id)
        if job is None:
            raise NotFoundException(f"Job {job_id} not found")
        return job_to_dict(job)

    @post("/details/{job_id:str}/requeue", status_code=200, sync_to_thread=True)
    def requeue(self, client: BackgroundJobClient, job_id: str) -> Dict[str, Any]:
        try:
            requeued = client.requeue(job_id)
        except JobNotFoundError as e:
            raise NotFoundException(str(e)) from e
        return {"id": job_id, "requeued": requeued}
