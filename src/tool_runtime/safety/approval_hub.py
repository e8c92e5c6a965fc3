"""
ApprovalHub：进程内审批中枢。

说明：
- 编排器对 allowedWithPermission 的调用 await `request_approval`；
- Hub 把“等待中的 call_id”与 asyncio Future 绑定；
- 权限提示 UI（任意线程）调用 `approve/reject` 后，Hub 在事件循环线程内 resolve Future。

约束：
- 进程重启会丢失 pending approvals；
- 同一 call_id 重复请求时复用同一个 Future，避免泄漏。
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from tool_runtime.safety.approvals import ApprovalDecision, ApprovalProvider, ApprovalRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingApproval:
    """一次等待中的审批。"""

    request: ApprovalRequest
    created_at_monotonic: float
    loop: asyncio.AbstractEventLoop
    future: "asyncio.Future[ApprovalDecision]"


def parse_decision(value: Any) -> ApprovalDecision:
    """把外部传入的决策字符串解析为 `ApprovalDecision`；未知值抛 ValueError。"""

    if isinstance(value, ApprovalDecision):
        return value
    v = str(value or "").strip().lower()
    if v in ("approved", "approve", "accept", "accepted"):
        return ApprovalDecision.APPROVED
    if v in ("denied", "deny", "reject", "rejected"):
        return ApprovalDecision.DENIED
    raise ValueError(f"invalid decision: {value!r}")


class ApprovalHub(ApprovalProvider):
    """审批中枢（同时实现 ApprovalProvider 协议）。"""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._pending: Dict[str, PendingApproval] = {}

    async def request_approval(self, *, request: ApprovalRequest, timeout_ms: Optional[int] = None) -> ApprovalDecision:  # type: ignore[override]
        pending = self._register(request)
        try:
            if timeout_ms is None:
                return await pending.future
            return await asyncio.wait_for(asyncio.shield(pending.future), timeout=float(timeout_ms) / 1000.0)
        finally:
            self._discard(pending)

    def _register(self, request: ApprovalRequest) -> PendingApproval:
        loop = asyncio.get_running_loop()
        with self._lock:
            existing = self._pending.get(request.call_id)
            if existing is not None and not existing.future.done():
                return existing
            fut: asyncio.Future[ApprovalDecision] = loop.create_future()
            pending = PendingApproval(
                request=request,
                created_at_monotonic=time.monotonic(),
                loop=loop,
                future=fut,
            )
            self._pending[request.call_id] = pending
            return pending

    def _discard(self, pending: PendingApproval) -> None:
        with self._lock:
            cur = self._pending.get(pending.request.call_id)
            if cur is pending:
                self._pending.pop(pending.request.call_id, None)

    def list_pending(self) -> List[Dict[str, Any]]:
        """列出等待中的审批（按创建时间排序；用于 UI 刷新/断线恢复）。"""

        with self._lock:
            items = sorted(self._pending.values(), key=lambda p: p.created_at_monotonic)
        now = time.monotonic()
        return [
            {
                "call_id": p.request.call_id,
                "approval_key": p.request.approval_key,
                "tool": p.request.tool,
                "summary": p.request.summary,
                "details": dict(p.request.details),
                "age_ms": int((now - p.created_at_monotonic) * 1000),
            }
            for p in items
        ]

    def decide(self, call_id: str, decision: Any) -> bool:
        """
        写入决策（可从任意线程调用）。

        返回：
        - True：找到 pending 并已投递 resolve
        - False：不存在/已完成/事件循环已关闭
        """

        parsed = parse_decision(decision)
        with self._lock:
            pending = self._pending.get(str(call_id))
        if pending is None:
            return False

        def _resolve() -> None:
            if not pending.future.done():
                pending.future.set_result(parsed)

        try:
            pending.loop.call_soon_threadsafe(_resolve)
        except RuntimeError:
            logger.warning("approval loop closed before decision for call_id=%s", call_id)
            self._discard(pending)
            return False
        return True

    def approve(self, call_id: str) -> bool:
        return self.decide(call_id, ApprovalDecision.APPROVED)

    def reject(self, call_id: str) -> bool:
        return self.decide(call_id, ApprovalDecision.DENIED)
