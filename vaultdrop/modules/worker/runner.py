import asyncio
import logging
from typing import Optional

from vaultdrop.core.db import SessionLocal

logger = logging.getLogger(__name__)

class Worker:
    """
    In-process job queue for side effects the request path must not wait on.
    Jobs: "notify" (store + push a notification), "purge_upload_sessions".
    """
    def __init__(self, session_factory=None):
        self.queue: asyncio.Queue = asyncio.Queue()
        self.is_running = False
        self._task: Optional[asyncio.Task] = None
        self._housekeeping_task: Optional[asyncio.Task] = None
        # Overridable for tests; defaults to the app SessionLocal
        self.session_factory = session_factory or SessionLocal

    async def start(self, housekeeping_interval: Optional[int] = None):
        """Starts the worker loop (and the periodic purge when an interval is given)."""
        if self.is_running:
            return
        self.is_running = True
        self._task = asyncio.create_task(self._process_queue())
        if housekeeping_interval:
            self._housekeeping_task = asyncio.create_task(self._housekeeping(housekeeping_interval))
        logger.info("[Worker] Started.")

    async def stop(self):
        self.is_running = False
        for task in (self._task, self._housekeeping_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._task = None
        self._housekeeping_task = None
        logger.info("[Worker] Stopped.")

    async def enqueue_job(self, task_name: str, **kwargs):
        # Arguments are ids and short strings only; never tokens
        logger.info(f"[Worker] Enqueuing job: {task_name} | Args: {sorted(kwargs)}")
        await self.queue.put((task_name, kwargs))

    async def run_job(self, task_name: str, **kwargs):
        from vaultdrop.modules.notifications.service import create_notification
        from vaultdrop.modules.storage.blob_store import get_blob_store
        from vaultdrop.modules.uploads.service import purge_expired_sessions

        if task_name == "notify":
            async with self.session_factory() as db:
                await create_notification(db, **kwargs)
        elif task_name == "purge_upload_sessions":
            async with self.session_factory() as db:
                purged = await purge_expired_sessions(db, get_blob_store())
            if purged:
                logger.info(f"[Worker] Purged {purged} expired upload sessions")
        else:
            logger.warning(f"[Worker] Unknown job: {task_name}")

    async def _process_queue(self):
        while self.is_running:
            try:
                task_name, kwargs = await self.queue.get()
                logger.info(f"[Worker] Processing: {task_name}")
                try:
                    await self.run_job(task_name, **kwargs)
                except Exception as e:
                    logger.error(f"[Worker] Job Failed: {task_name}: {e}", exc_info=True)
                finally:
                    self.queue.task_done()

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"[Worker] Loop Error: {e}")
                await asyncio.sleep(1)

    async def _housekeeping(self, interval: int):
        while self.is_running:
            await asyncio.sleep(interval)
            await self.enqueue_job("purge_upload_sessions")

worker = Worker()

async def notify(user_id, title: str, message: str, resource_type: str = None, resource_id=None):
    """
    Queue a notification for a participant. Failure to queue is logged, never raised.
    """
    try:
        await worker.enqueue_job(
            "notify",
            user_id=user_id,
            title=title,
            message=message,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id else None,
        )
    except Exception as e:
        logger.error(f"[Worker] Could not queue notification for {user_id}: {e}")
