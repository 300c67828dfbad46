"""
Approval Coordinator - Queue of operations awaiting user consent.

Each request waits on its own future. The user approves or rejects requests
individually (oldest first in `pending()`); a rejection surfaces in the
waiting caller as UserRejectedError, a timeout as RequestTimeoutError.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

from errors import ApprovalQueueFullError, RequestTimeoutError, UserRejectedError

logger = logging.getLogger(__name__)

DEFAULT_MAX_PENDING = 16
DEFAULT_APPROVAL_TIMEOUT = 90.0


@dataclass
class ApprovalRequest:
    """An operation from an origin that needs the user's explicit consent."""
    id: str
    origin: str
    method: str
    summary: dict
    created_at: str
    status: str = "pending"  # pending | approved | rejected | expired | cancelled
    _future: Optional[asyncio.Future] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "origin": self.origin,
            "method": self.method,
            "summary": dict(self.summary),
            "createdAt": self.created_at,
            "status": self.status,
        }


class ApprovalCoordinator:
    """
    Bounded FIFO of pending approvals.

    Usage:
        approvals = ApprovalCoordinator()
        approvals.subscribe(lambda req: print(req.origin, req.method))
        await approvals.request("https://app.example", "signTransaction", {...})
    """

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING,
                 timeout: Optional[float] = DEFAULT_APPROVAL_TIMEOUT):
        self.max_pending = max_pending
        self.timeout = timeout
        self._pending: dict[str, ApprovalRequest] = {}
        self._listeners: list[Callable[[ApprovalRequest], None]] = []

    def subscribe(self, listener: Callable[[ApprovalRequest], None]) -> Callable[[], None]:
        """Call `listener` whenever a request is queued. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def pending(self) -> list[ApprovalRequest]:
        """Pending requests, oldest first."""
        return list(self._pending.values())

    def get(self, request_id: str) -> Optional[ApprovalRequest]:
        return self._pending.get(request_id)

    async def request(self, origin: str, method: str, summary: Optional[dict] = None,
                      request_id: Optional[str] = None,
                      timeout: Optional[float] = None) -> ApprovalRequest:
        """
        Queue a request and wait for the user's decision.

        `request_id` is the bridge correlation id when the request comes from a
        page; a fresh id is used if absent or already queued. `timeout`
        overrides the coordinator default for this request.

        Returns the approved request.

        Raises:
            ApprovalQueueFullError: too many requests already waiting
            UserRejectedError: the user (or a tab close / lock) rejected it
            RequestTimeoutError: nobody decided within the timeout
        """
        if len(self._pending) >= self.max_pending:
            logger.warning(f"Approval queue full, refusing {method} from {origin}")
            raise ApprovalQueueFullError()

        request = ApprovalRequest(
            id=request_id if request_id and request_id not in self._pending else uuid.uuid4().hex,
            origin=origin,
            method=method,
            summary=summary or {},
            created_at=datetime.now(timezone.utc).isoformat(),
            _future=asyncio.get_running_loop().create_future(),
        )
        self._pending[request.id] = request
        logger.info(f"Approval needed: {method} from {origin} ({request.id})")
        self._notify(request)

        wait = timeout if timeout is not None else self.timeout
        try:
            await asyncio.wait_for(request._future, wait)
        except asyncio.TimeoutError:
            request.status = "expired"
            logger.warning(f"Approval {request.id} expired after {wait}s")
            raise RequestTimeoutError("Approval request timed out") from None
        except asyncio.CancelledError:
            # The caller went away (page timed out)
            request.status = "cancelled"
            raise
        finally:
            self._pending.pop(request.id, None)
        return request

    def approve(self, request_id: str) -> bool:
        """Resolve the waiting caller. Returns False if the request is unknown."""
        request = self._pending.pop(request_id, None)
        if request is None or request._future.done():
            return False
        request.status = "approved"
        request._future.set_result(True)
        logger.info(f"Approved {request.method} from {request.origin}")
        return True

    def reject(self, request_id: str, reason: Optional[str] = None) -> bool:
        """Fail the waiting caller with UserRejectedError."""
        request = self._pending.pop(request_id, None)
        if request is None or request._future.done():
            return False
        request.status = "rejected"
        request._future.set_exception(UserRejectedError(reason))
        logger.info(f"Rejected {request.method} from {request.origin}")
        return True

    def reject_origin(self, origin: str, reason: Optional[str] = None) -> int:
        """Reject everything a single origin is waiting on (tab closed)."""
        ids = [r.id for r in self._pending.values() if r.origin == origin]
        return sum(1 for request_id in ids if self.reject(request_id, reason))

    def reject_all(self, reason: Optional[str] = None) -> int:
        """Reject every pending request (wallet locked)."""
        return sum(1 for request_id in list(self._pending) if self.reject(request_id, reason))

    def _notify(self, request: ApprovalRequest) -> None:
        for listener in list(self._listeners):
            try:
                listener(request)
            except Exception:
                logger.exception("Approval listener failed")
