"""
Tool Call 编排器（单次调用的完整链路 + turn 级并发与取消）。

链路（每个调用独立的异步链，互不阻塞）：
1) 解析 arguments → 登记 generated
2) 注册表查找（未知工具 → errored，turn 继续）
3) preprocess（path_scoped：路径解析；失败 → errored）
4) 策略评估（只算一次，写入 tracker）
5) disabled → errored；allowedWithPermission → pendingPermission → 等待审批；
   allowedWithoutPermission → calling
6) 执行边界复核策略（assert_executable）后调用 handler
7) 结果经过期保护写回（done / errored）

审批口径：
- 未配置 ApprovalProvider、审批超时、审批拒绝、provider 抛出异常：一律按拒绝处理
  （pendingPermission → canceled，记录原因）。
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from tool_runtime.core.errors import (
    FrameworkError,
    InvalidTransitionError,
    PathResolutionError,
    PolicyViolationError,
    RegistryError,
    UnknownToolError,
)
from tool_runtime.core.tool_calls import (
    ToolCallError,
    ToolCallState,
    ToolCallTracker,
    assert_executable,
    summarize_statuses,
)
from tool_runtime.safety.approvals import ApprovalDecision, ApprovalProvider, build_approval_request
from tool_runtime.safety.policy import ToolPolicy
from tool_runtime.tools.protocol import DisplayPhase, ToolResult, parse_tool_arguments
from tool_runtime.tools.registry import (
    RegisteredTool,
    ToolExecutionContext,
    ToolInvocation,
    ToolRegistry,
    sanitize_for_event,
)

logger = logging.getLogger(__name__)

_TIMEOUT_ERRORS = (asyncio.TimeoutError, TimeoutError)


@dataclass(frozen=True)
class RawToolCall:
    """
    Agent 发出的原始工具调用。

    字段：
    - call_id：会话内唯一
    - name：工具名
    - arguments：JSON 字符串或 dict（function.arguments）
    """

    call_id: str
    name: str
    arguments: Union[str, Mapping[str, Any], None] = None


def _error_from_exception(kind: str, exc: BaseException) -> ToolCallError:
    if isinstance(exc, FrameworkError):
        return ToolCallError(kind=kind, message=exc.message, details={"code": exc.code, **exc.details})
    return ToolCallError(kind=kind, message=str(exc) or type(exc).__name__, details={"exception": type(exc).__name__})


def _error_result(error: ToolCallError) -> ToolResult:
    return ToolResult.error_payload(error_kind=error.kind, error=error.message, data=dict(error.details) or None)


class ToolCallOrchestrator:
    """
    编排器。

    参数：
    - registry：已 seal 的注册表
    - tracker：生命周期追踪器（会话级共享）
    - ctx：handler 执行上下文
    - approval_provider：审批 Provider（None 表示无人可审批：需要审批的调用一律按拒绝处理）
    - approval_timeout_ms：审批等待上限（None 表示无限等待）
    """

    def __init__(
        self,
        *,
        registry: ToolRegistry,
        tracker: ToolCallTracker,
        ctx: ToolExecutionContext,
        approval_provider: Optional[ApprovalProvider] = None,
        approval_timeout_ms: Optional[int] = None,
    ) -> None:
        if not registry.sealed:
            raise RegistryError(code="REGISTRY_NOT_SEALED", message="Registry must be sealed before dispatching tool calls")
        self._registry = registry
        self._tracker = tracker
        self._ctx = ctx
        self._approval_provider = approval_provider
        self._approval_timeout_ms = approval_timeout_ms
        self._turn_tasks: Dict[str, Dict[str, "asyncio.Task[ToolCallState]"]] = {}

    @property
    def tracker(self) -> ToolCallTracker:
        return self._tracker

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    def _sanitize(self, args: Mapping[str, Any]) -> Any:
        return sanitize_for_event(args, redaction_values=self._ctx.redaction_values)

    async def run_turn(self, turn_id: str, calls: Sequence[RawToolCall]) -> List[ToolCallState]:
        """
        并发执行一个 turn 内的全部调用。

        返回：
        - 按输入顺序的终态快照（被取消的调用状态为 canceled）

        异常：
        - InvalidTransitionError / PolicyViolationError：集成缺陷，原样上抛
        """

        tasks = self._turn_tasks.setdefault(turn_id, {})
        for call in calls:
            tasks[call.call_id] = asyncio.create_task(self.run_call(call, turn_id=turn_id), name=f"tool-call:{call.call_id}")
        try:
            outcomes = await asyncio.gather(*(tasks[c.call_id] for c in calls), return_exceptions=True)
        finally:
            for call in calls:
                tasks.pop(call.call_id, None)
            if not tasks:
                self._turn_tasks.pop(turn_id, None)

        for outcome in outcomes:
            if isinstance(outcome, asyncio.CancelledError):
                continue
            if isinstance(outcome, BaseException):
                raise outcome
        states = [self._tracker.get(c.call_id) for c in calls]
        logger.debug("turn %s finished: %s", turn_id, summarize_statuses(states))
        return states

    def cancel_turn(self, turn_id: str, *, reason: str = "turn canceled") -> List[str]:
        """
        取消 turn：非终态调用 → canceled，并中止在途任务（过期结果由 tracker 丢弃）。
        """

        canceled = self._tracker.cancel_turn(turn_id, reason=reason)
        for task in list(self._turn_tasks.get(turn_id, {}).values()):
            if not task.done():
                task.cancel()
        return canceled

    def close(self, *, reason: str = "session closed") -> None:
        """会话销毁：取消所有 turn。"""

        for turn_id in list(self._turn_tasks):
            self.cancel_turn(turn_id, reason=reason)

    async def run_call(self, call: RawToolCall, *, turn_id: str) -> ToolCallState:
        """
        执行单个调用的完整链路，返回终态（或被取消时的当前）快照。

        说明：
        - 面向 Agent 的失败（未知工具/路径解析失败/参数非法/执行异常）转为 errored，不上抛；
        - 任务被取消时，确保调用进入 canceled 后再传播 CancelledError。
        """

        try:
            raw_args = parse_tool_arguments(call.arguments)
            parse_error: Optional[ToolCallError] = None
        except ValueError as e:
            raw_args = {}
            parse_error = ToolCallError(kind="validation", message=str(e))

        state = self._tracker.create(call_id=call.call_id, tool_name=call.name, turn_id=turn_id, raw_arguments=raw_args)
        generation = state.generation
        try:
            return await self._drive(call, state, raw_args, parse_error, generation)
        except asyncio.CancelledError:
            current = self._tracker.get(call.call_id)
            if not current.is_terminal:
                self._tracker.cancel(call.call_id, reason="task canceled")
            raise

    async def _drive(
        self,
        call: RawToolCall,
        state: ToolCallState,
        raw_args: Dict[str, Any],
        parse_error: Optional[ToolCallError],
        generation: int,
    ) -> ToolCallState:
        call_id = call.call_id
        if parse_error is not None:
            return self._fail(call_id, parse_error)

        try:
            tool = self._registry.get(call.name)
        except UnknownToolError as e:
            return self._fail(call_id, _error_from_exception("not_found", e))

        try:
            processed = await self._registry.preprocess_args(call.name, raw_args, self._ctx.workspace)
            if not self._tracker.is_current(call_id, generation):
                return self._tracker.get(call_id)
            effective = self._registry.evaluate_policy(call.name, raw_args, processed)
        except PathResolutionError as e:
            return self._apply_failure(call_id, generation, _error_from_exception("path_resolution", e))
        except (InvalidTransitionError, PolicyViolationError):
            raise
        except Exception as e:
            logger.exception("preprocess failed for %s (%s)", call_id, call.name)
            return self._apply_failure(call_id, generation, _error_from_exception("unknown", e))

        state = self._tracker.record_policy(call_id, processed_arguments=processed, effective_policy=effective)

        if effective == ToolPolicy.DISABLED:
            return self._fail(call_id, ToolCallError(kind="permission", message=f"Tool {call.name} is disabled"))

        if effective == ToolPolicy.ALLOWED_WITH_PERMISSION:
            self._tracker.request_permission(call_id)
            decision, reason = await self._await_approval(tool, state)
            if not self._tracker.is_current(call_id, generation):
                return self._tracker.get(call_id)
            if decision != ApprovalDecision.APPROVED:
                return self._tracker.reject(call_id, reason=reason)
            state = self._tracker.approve(call_id)
        else:
            state = self._tracker.start(call_id)

        return await self._execute(tool, state, generation)

    async def _await_approval(self, tool: RegisteredTool, state: ToolCallState) -> Tuple[ApprovalDecision, str]:
        provider = self._approval_provider
        if provider is None:
            logger.info("no approval provider; rejecting %s (%s)", state.call_id, state.tool_name)
            return ApprovalDecision.DENIED, "no approval provider configured"

        request = build_approval_request(
            call_id=state.call_id,
            tool=state.tool_name,
            summary=self._ctx.redact_text(tool.descriptor.render_display(DisplayPhase.PENDING, state.raw_arguments)),
            display_title=tool.descriptor.display_title,
            arguments=self._sanitize(state.raw_arguments),
            processed_arguments=self._sanitize(state.processed_arguments or {}),
        )
        timeout_ms = self._approval_timeout_ms
        try:
            if timeout_ms is None:
                decision = await provider.request_approval(request=request)
            else:
                decision = await asyncio.wait_for(
                    provider.request_approval(request=request, timeout_ms=timeout_ms),
                    timeout=float(timeout_ms) / 1000.0,
                )
        except _TIMEOUT_ERRORS:
            logger.info("approval timed out for %s after %sms", state.call_id, timeout_ms)
            return ApprovalDecision.DENIED, "approval timed out"
        except (InvalidTransitionError, PolicyViolationError):
            raise
        except Exception as e:
            logger.warning("approval provider failed for %s (%s): %s", state.call_id, state.tool_name, e)
            return ApprovalDecision.DENIED, f"approval failed: {e}"
        if decision == ApprovalDecision.APPROVED:
            return decision, "approved"
        return ApprovalDecision.DENIED, "denied by user"

    async def _execute(self, tool: RegisteredTool, state: ToolCallState, generation: int) -> ToolCallState:
        call_id = state.call_id
        assert_executable(self._tracker.get(call_id))
        invocation = ToolInvocation(
            call_id=call_id,
            name=state.tool_name,
            args=state.raw_arguments,
            processed_args=state.processed_arguments or {},
        )
        try:
            result = await tool.handler(invocation, self._ctx)
        except _TIMEOUT_ERRORS as e:
            return self._apply_failure(call_id, generation, _error_from_exception("timeout", e))
        except PathResolutionError as e:
            return self._apply_failure(call_id, generation, _error_from_exception("path_resolution", e))
        except (InvalidTransitionError, PolicyViolationError):
            raise
        except FrameworkError as e:
            return self._apply_failure(call_id, generation, _error_from_exception(e.code.lower(), e))
        except Exception as e:
            logger.exception("tool %s raised during execution (%s)", state.tool_name, call_id)
            return self._apply_failure(call_id, generation, _error_from_exception("unknown", e))

        if not result.ok:
            error = ToolCallError(
                kind=result.error_kind or "unknown",
                message=result.message or "tool returned an error",
                details=dict(result.details or {}),
            )
            applied = self._tracker.apply_failure(call_id, generation, error, result=result)
        else:
            applied = self._tracker.apply_result(call_id, generation, result)
        return applied if applied is not None else self._tracker.get(call_id)

    def _fail(self, call_id: str, error: ToolCallError) -> ToolCallState:
        return self._tracker.fail(call_id, error, result=_error_result(error))

    def _apply_failure(self, call_id: str, generation: int, error: ToolCallError) -> ToolCallState:
        applied = self._tracker.apply_failure(call_id, generation, error, result=_error_result(error))
        return applied if applied is not None else self._tracker.get(call_id)
