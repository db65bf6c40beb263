"""
depsolve_compat/hooks.py
========================
Hook Pipeline: 이름 붙은 확장 지점에서 핸들러를 순서대로 실행

실행 규칙:
1. 등록 순서대로 하나씩 실행 (동시 실행 없음, 뒤 핸들러는 앞 핸들러의 변경을 읽음)
2. 각 핸들러의 반환값이 다음 핸들러 입력이 됨 (None 반환 = 제자리 수정, 값 유지)
3. 핸들러마다 timeout 적용, 초과/예외 시:
   - failOnPluginError=True  → HookExecutionError 전파, 즉시 중단
   - failOnPluginError=False → 로그 남기고 실패 직전 값으로 다음 핸들러 진행
4. 등록된 핸들러가 없으면 입력을 그대로 반환

주의:
- 타임아웃된 핸들러 작업은 취소되지 않는다 (파이프라인이 기다림만 중단)
- 실패한 핸들러가 중첩 구조를 제자리에서 일부 수정했다면 그 흔적은 남는다
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Set, Union

from .errors import HookExecutionError
from .models import HookRegistration

logger = logging.getLogger(__name__)


# =============================================================================
# 훅 이름 (플러그인 호환 계약)
# =============================================================================

class Hook(str, Enum):
    """고정된 훅 이름 목록"""
    BEFORE_ANALYZE = "before-analyze"
    AFTER_ANALYZE = "after-analyze"
    ANALYZE_PACKAGE = "analyze-package"

    BEFORE_COMPATIBILITY_CHECK = "before-compatibility-check"
    AFTER_COMPATIBILITY_CHECK = "after-compatibility-check"
    CHECK_PAIR_COMPATIBILITY = "check-pair-compatibility"

    CUSTOM_CHECK = "custom-check"

    BEFORE_REPORT_GENERATION = "before-report-generation"
    AFTER_REPORT_GENERATION = "after-report-generation"
    FORMAT_REPORT = "format-report"


HOOK_NAMES = frozenset(h.value for h in Hook)

HookName = Union[str, Hook]
Handler = Callable[[Any], Any]


def hook_key(name: HookName) -> str:
    return name.value if isinstance(name, Hook) else str(name)


# =============================================================================
# 전역 설정
# =============================================================================

DEFAULT_TIMEOUT_MS = 5000


@dataclass
class GlobalConfig:
    """
    플러그인 전역 설정

    영속 형식 (camelCase):
        {"timeoutMs": 5000, "loggingEnabled": true, "failOnPluginError": false}
    """
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    logging_enabled: bool = True
    fail_on_plugin_error: bool = False

    @property
    def timeout(self) -> Optional[float]:
        """초 단위 timeout (0 이하면 무제한)"""
        if self.timeout_ms is None or self.timeout_ms <= 0:
            return None
        return self.timeout_ms / 1000.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GlobalConfig":
        defaults = cls()
        return cls(
            timeout_ms=int(data.get("timeoutMs", defaults.timeout_ms)),
            logging_enabled=bool(data.get("loggingEnabled", defaults.logging_enabled)),
            fail_on_plugin_error=bool(data.get("failOnPluginError", defaults.fail_on_plugin_error)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timeoutMs": self.timeout_ms,
            "loggingEnabled": self.logging_enabled,
            "failOnPluginError": self.fail_on_plugin_error,
        }


# =============================================================================
# Pipeline
# =============================================================================

class HookPipeline:
    """
    훅 핸들러 레지스트리 + 실행기

    run() 호출 사이에 유지되는 상태는 등록 목록뿐이다.
    """

    def __init__(self, config: Optional[GlobalConfig] = None):
        self.config = config or GlobalConfig()
        self._hooks: Dict[str, List[HookRegistration]] = {}
        # 타임아웃 후에도 계속 도는 작업 (GC 방지용 참조)
        self._background: Set[asyncio.Future] = set()

    # -------------------------------------------------------------------------
    # 등록
    # -------------------------------------------------------------------------

    def register(self, hook_name: HookName, handler: Handler,
                 plugin_id: Optional[str] = None) -> HookRegistration:
        """핸들러 추가 (중복 제거 없음)"""
        if not callable(handler):
            raise TypeError(f"Hook handler for '{hook_key(hook_name)}' must be callable")

        key = hook_key(hook_name)
        if key not in HOOK_NAMES:
            logger.debug("Registering handler for non-standard hook '%s'", key)

        registration = HookRegistration(hook_name=key, handler=handler, plugin_id=plugin_id)
        self._hooks.setdefault(key, []).append(registration)
        return registration

    def unregister(self, registration: HookRegistration) -> bool:
        handlers = self._hooks.get(registration.hook_name, [])
        for index, existing in enumerate(handlers):
            if existing is registration:
                del handlers[index]
                return True
        return False

    def unregister_plugin(self, plugin_id: str) -> int:
        """플러그인 소유 핸들러를 모든 훅에서 제거"""
        removed = 0
        for key, handlers in self._hooks.items():
            kept = [r for r in handlers if r.plugin_id != plugin_id]
            removed += len(handlers) - len(kept)
            self._hooks[key] = kept
        return removed

    def handlers(self, hook_name: HookName) -> List[HookRegistration]:
        return list(self._hooks.get(hook_key(hook_name), []))

    def has_handlers(self, hook_name: HookName) -> bool:
        return bool(self._hooks.get(hook_key(hook_name)))

    def hooks_for_plugin(self, plugin_id: str) -> List[str]:
        """플러그인이 핸들러를 등록한 훅 이름 (중복 없이, 처음 등록 순서)"""
        names: List[str] = []
        for key, handlers in self._hooks.items():
            if key not in names and any(r.plugin_id == plugin_id for r in handlers):
                names.append(key)
        return names

    @property
    def pending_background(self) -> int:
        return len(self._background)

    # -------------------------------------------------------------------------
    # 실행
    # -------------------------------------------------------------------------

    async def run(self, hook_name: HookName, data: Any) -> Any:
        """
        훅 실행

        Returns:
            마지막 핸들러까지 거친 값 (핸들러 없으면 data 그대로)

        Raises:
            HookExecutionError: failOnPluginError가 켜져 있고 핸들러가 실패한 경우
        """
        key = hook_key(hook_name)
        registrations = list(self._hooks.get(key, []))
        result = data

        for registration in registrations:
            try:
                output = await self._invoke(registration, result)
            except HookExecutionError as e:
                logger.error("%s", e)
                if self.config.fail_on_plugin_error:
                    raise
                continue

            if output is not None:
                result = output

        return result

    async def call_with_timeout(self, outcome: Union[Awaitable[Any], Any], label: str,
                                plugin_id: Optional[str] = None) -> Any:
        """
        결과가 awaitable이면 timeout까지 기다림 (플러그인 초기화 등에 사용)

        Raises:
            HookExecutionError: 타임아웃 또는 예외
        """
        if not inspect.isawaitable(outcome):
            return outcome
        return await self._await_bounded(outcome, label, plugin_id)

    async def _invoke(self, registration: HookRegistration, data: Any) -> Any:
        try:
            outcome = registration.handler(data)
        except Exception as e:
            raise HookExecutionError(
                registration.hook_name, _describe(e), registration.plugin_id
            ) from e

        return await self.call_with_timeout(
            outcome, registration.hook_name, registration.plugin_id
        )

    async def _await_bounded(self, awaitable: Awaitable[Any], label: str,
                             plugin_id: Optional[str]) -> Any:
        task = asyncio.ensure_future(awaitable)
        done, _ = await asyncio.wait({task}, timeout=self.config.timeout)

        if not done:
            # 취소하지 않고 백그라운드로 남김
            self._background.add(task)
            task.add_done_callback(self._finish_background)
            raise HookExecutionError(
                label, f"timed out after {self.config.timeout_ms} ms",
                plugin_id, timed_out=True
            )

        try:
            return task.result()
        except Exception as e:
            raise HookExecutionError(label, _describe(e), plugin_id) from e

    def _finish_background(self, task: asyncio.Future):
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.debug("Timed-out handler finished later with error: %s", error)


def _describe(error: BaseException) -> str:
    return str(error) or type(error).__name__


__all__ = [
    'Hook',
    'HOOK_NAMES',
    'hook_key',
    'GlobalConfig',
    'HookPipeline',
    'DEFAULT_TIMEOUT_MS',
]
