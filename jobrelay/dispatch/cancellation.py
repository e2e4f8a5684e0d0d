"""
Cancellation channel.

Cancels jobs on request from outside their handler. Live jobs go through
the dispatcher's resolution gate; records left non-terminal by an earlier
engine (nobody in this process owns them) are closed directly in the store.
"""

import logging

from jobrelay.constants import CANCELED_MESSAGE, JobStatus
from jobrelay.dispatch.dispatcher import Dispatcher
from jobrelay.errors import JobNotFoundError
from jobrelay.jobs.job import Job, utcnow

logger = logging.getLogger(__name__)


class CancellationChannel:
    """Locates a job by handle or id and cancels it if it is not terminal."""

    def __init__(self, dispatcher: Dispatcher):
        self._dispatcher = dispatcher

    async def cancel(self, ref: Job | str) -> bool:
        """
        Cancel a job.

        Args:
            ref: Job handle or job id.

        Returns:
            True if the job was canceled, False if it was already terminal.

        Raises:
            JobNotFoundError: If no job with this id exists.
            StoreError: If the store lookup or update failed.
        """
        job_id = ref.id if isinstance(ref, Job) else ref

        job = self._dispatcher.get_live(job_id)
        if job is None and isinstance(ref, Job) and ref.is_terminal:
            job = ref

        if job is not None:
            if job.is_terminal:
                logger.debug("Cancel of finished job ignored", extra={"job_id": job_id})
                return False
            return await self._dispatcher.cancel_job(job)

        record = await self._dispatcher.store.find_by_id(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        if record.is_terminal:
            logger.debug("Cancel of finished job ignored", extra={"job_id": job_id})
            return False

        await self._dispatcher.store.update_by_id(
            job_id,
            {"status": JobStatus.ERROR, "error": CANCELED_MESSAGE, "end_on": utcnow()},
        )
        logger.info("Canceled orphaned job record", extra={"job_id": job_id})
        return True
