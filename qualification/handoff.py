"""
Handoff router.

Notifies the downstream scheduling collaborator, via webhook, when a
conversation is ready to be booked. Failed deliveries are queued for a
later retry.
"""

import asyncio
import logging
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Deque, Dict, List, Optional

import httpx

from .clock import utc_now

logger = logging.getLogger(__name__)


@dataclass
class HandoffRequest:
    """Payload sent to the scheduling collaborator."""
    conversation_key: str
    phase: str
    progress: int
    score: int
    stage: str
    bant: Dict[str, Any] = field(default_factory=dict)
    archetype: Optional[str] = None
    cta: Optional[str] = None
    name: Optional[str] = None
    company: Optional[str] = None
    last_message: Optional[str] = None
    requested_at: datetime = field(default_factory=utc_now)
    delivered_at: Optional[datetime] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "event": "lead.ready_for_handoff",
            "conversation_key": self.conversation_key,
            "phase": self.phase,
            "progress": self.progress,
            "score": self.score,
            "stage": self.stage,
            "bant": self.bant,
            "archetype": self.archetype,
            "cta": self.cta,
            "contact": {"name": self.name, "company": self.company},
            "last_message": self.last_message,
            "requested_at": self.requested_at.isoformat(),
        }


class HandoffRouter:
    """
    Posts handoff requests to a webhook.

    Without a webhook URL requests are only queued, so the engine works
    the same with or without a scheduling collaborator. The retry queue
    and the delivered index are bounded; the oldest entries are evicted.
    """

    def __init__(
        self,
        webhook_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_queue: int = 500,
        max_delivered: int = 1000,
    ):
        self.webhook_url = webhook_url
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._queue: Deque[HandoffRequest] = deque(maxlen=max_queue)
        self._delivered: "OrderedDict[str, HandoffRequest]" = OrderedDict()
        self.max_delivered = max_delivered
        self.evicted = 0

    @property
    def enabled(self) -> bool:
        return bool(self.webhook_url)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key
        return headers

    def _enqueue(self, request: HandoffRequest):
        if len(self._queue) == self._queue.maxlen:
            dropped = self._queue[0]
            self.evicted += 1
            logger.warning(f"Handoff queue full, dropping oldest request for {dropped.conversation_key}")
        self._queue.append(request)

    def _mark_delivered(self, request: HandoffRequest):
        self._delivered.pop(request.conversation_key, None)
        self._delivered[request.conversation_key] = request
        while len(self._delivered) > self.max_delivered:
            self._delivered.popitem(last=False)

    async def send(self, request: HandoffRequest) -> bool:
        """Deliver one request. Returns False (and queues it) on failure."""
        if not self.webhook_url:
            logger.warning(f"No handoff webhook configured, queued {request.conversation_key}")
            self._enqueue(request)
            return False

        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(
                    self.webhook_url,
                    json=request.to_payload(),
                    headers=self._headers(),
                )
        except httpx.HTTPError as e:
            logger.error(f"Handoff delivery error for {request.conversation_key}: {e}")
            self._enqueue(request)
            return False

        if response.status_code in (200, 201, 202, 204):
            request.delivered_at = utc_now()
            self._mark_delivered(request)
            logger.info(f"Handoff delivered for {request.conversation_key} (score={request.score})")
            return True

        logger.error(
            f"Handoff rejected for {request.conversation_key}: "
            f"status={response.status_code} body={response.text[:300]}"
        )
        self._enqueue(request)
        return False

    async def send_with_retry(
        self,
        request: HandoffRequest,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ) -> bool:
        for attempt in range(max_retries):
            self._drop_from_queue(request)
            if await self.send(request):
                return True
            if not self.enabled:
                return False
            if attempt < max_retries - 1:
                logger.info(f"Retrying handoff for {request.conversation_key} ({attempt + 1}/{max_retries})")
                await asyncio.sleep(retry_delay * (attempt + 1))
        return False

    def _drop_from_queue(self, request: HandoffRequest):
        kept = [r for r in self._queue if r is not request]
        self._queue.clear()
        self._queue.extend(kept)

    async def process_queue(self) -> int:
        """Retry queued requests once. Returns how many were delivered."""
        if not self.enabled or not self._queue:
            return 0
        pending = list(self._queue)
        self._queue.clear()
        delivered = 0
        for request in pending:
            if await self.send(request):
                delivered += 1
        if delivered:
            logger.info(f"Handoff queue drained: {delivered}/{len(pending)} delivered")
        return delivered

    async def run_drain_loop(self, interval: float):
        """Retry the queue every ``interval`` seconds until cancelled."""
        while True:
            await asyncio.sleep(interval)
            await self.process_queue()

    def queue_size(self) -> int:
        return len(self._queue)

    def queued(self) -> List[HandoffRequest]:
        return list(self._queue)

    def delivered(self) -> Dict[str, HandoffRequest]:
        return dict(self._delivered)
