import asyncio
import logging
from typing import Dict, Set
from uuid import UUID

logger = logging.getLogger(__name__)

# Events queued per stream before the oldest is dropped
STREAM_BACKLOG = 100

class TransferEventBroadcaster:
    """
    Fan-out of transfer events (offer, invoice, payment, grant, dispute,
    revocation) to the open SSE streams of the parties involved. The stored
    notification row is the record; this is only the live push.
    """

    def __init__(self, backlog: int = STREAM_BACKLOG):
        # party id -> one queue per open stream
        self.streams: Dict[UUID, Set[asyncio.Queue]] = {}
        self.backlog = backlog
        self.lock = asyncio.Lock()

    async def connect(self, party_id: UUID) -> asyncio.Queue:
        async with self.lock:
            queue = asyncio.Queue(maxsize=self.backlog)
            self.streams.setdefault(party_id, set()).add(queue)
            logger.info(f"[Broadcaster] Stream opened for {party_id} ({len(self.streams[party_id])} open)")
            return queue

    async def disconnect(self, party_id: UUID, queue: asyncio.Queue):
        async with self.lock:
            queues = self.streams.get(party_id)
            if queues is None:
                return
            queues.discard(queue)
            if not queues:
                del self.streams[party_id]
            logger.info(f"[Broadcaster] Stream closed for {party_id}")

    async def broadcast(self, party_id: UUID, event: dict) -> int:
        """Returns how many open streams received the event."""
        async with self.lock:
            queues = self.streams.get(party_id, set())
            for queue in queues:
                if queue.full():
                    # oldest event goes; the stored row still has it
                    queue.get_nowait()
                    logger.warning(f"[Broadcaster] Stream backlog full for {party_id}, dropped oldest event")
                queue.put_nowait(event)
            if queues:
                logger.info(f"[Broadcaster] {event.get('title', 'event')} -> {party_id} ({len(queues)} streams)")
            return len(queues)

broadcaster = TransferEventBroadcaster()
