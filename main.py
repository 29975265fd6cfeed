# main.py
import logging
import time
from datetime import timedelta

import delayedjobs
from delayedjobs import BackgroundJobServer, JobsOptions, RetryBehavior
from delayedjobs.storage.memory_storage import MemoryStorage


@delayedjobs.registry.job()
def sample_task(x, y):
    print(f"Executing sample_task with args: {x}, {y}")
    return x + y


@delayedjobs.registry.job(retry_behavior=RetryBehavior(True, 2, lambda retries: 1))
def flaky_task():
    raise RuntimeError("flaky_task always fails")


class NewsletterJob:
    def run(self, issue):
        print(f"Sending newsletter issue {issue}")


delayedjobs.registry.register_type(NewsletterJob)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    # 1. Configure delayedjobs
    storage = MemoryStorage()
    options = JobsOptions(polling_delay=1, worker_count=2)
    delayedjobs.configure(storage, options)

    # 2. Create jobs through the shared client
    client = delayedjobs.get_client()
    job_id = client.enqueue(sample_task, 1, 2)
    print(f"Enqueued job {job_id} for sample_task(1, 2)")
    newsletter_id = client.schedule(NewsletterJob.run, timedelta(seconds=2), 42)
    flaky_id = client.enqueue(flaky_task)

    # 3. Run a server while the jobs come due
    with BackgroundJobServer(storage, delayedjobs.registry, options):
        time.sleep(6)

    for name, current_id in (
        ("sample_task", job_id),
        ("NewsletterJob.run", newsletter_id),
        ("flaky_task", flaky_id),
    ):
        job = client.get_job_details(current_id)
        print(f"{name}: {job.state_name} after {job.retries} retries")

    print("\nDemonstration finished.")
