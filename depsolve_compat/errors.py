"""
depsolve_compat/errors.py
=========================
예외 분류

- MetadataFetchError: 패키지 단위로 격리, 해당 쌍은 unknown 처리
- VersionParseError: 상위로 전파하지 않고 unknown 처리
- HookExecutionError: failOnPluginError 설정에 따라 전파 또는 건너뜀
- PluginLoadError: 플러그인 단위로 격리
- ConfigParseError: 기본 설정으로 대체 (경고)
"""

from typing import Optional


class DepsolveError(Exception):
    """패키지 공통 기본 예외"""


class MetadataFetchError(DepsolveError):
    """패키지 메타데이터 조회 실패"""

    def __init__(self, package: str, reason: str):
        self.package = package
        self.reason = reason
        super().__init__(f"Failed to fetch metadata for {package}: {reason}")


class VersionParseError(DepsolveError, ValueError):
    """유효하지 않은 버전/범위 문자열"""

    def __init__(self, value: str, reason: str = "not a valid semantic version"):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid version '{value}': {reason}")


class HookExecutionError(DepsolveError):
    """훅 핸들러 실패 또는 타임아웃"""

    def __init__(
        self,
        hook_name: str,
        reason: str,
        plugin_id: Optional[str] = None,
        timed_out: bool = False
    ):
        self.hook_name = hook_name
        self.reason = reason
        self.plugin_id = plugin_id
        self.timed_out = timed_out
        owner = f" (plugin: {plugin_id})" if plugin_id else ""
        super().__init__(f"Hook '{hook_name}' failed{owner}: {reason}")


class PluginError(DepsolveError):
    """플러그인 관련 기본 예외"""


class PluginLoadError(PluginError):
    """플러그인 로드/초기화 실패"""

    def __init__(self, plugin_id: str, reason: str):
        self.plugin_id = plugin_id
        self.reason = reason
        super().__init__(f"[Plugin: {plugin_id}] {reason}")


class PluginNotLoadedError(PluginError, KeyError):
    """로드되지 않은 플러그인 참조"""

    def __init__(self, plugin_id: str):
        self.plugin_id = plugin_id
        super().__init__(f"Plugin '{plugin_id}' is not loaded")

    def __str__(self) -> str:
        return f"Plugin '{self.plugin_id}' is not loaded"


class ConfigParseError(DepsolveError):
    """설정 파일 파싱 실패"""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot parse config {path}: {reason}")


__all__ = [
    'DepsolveError',
    'MetadataFetchError',
    'VersionParseError',
    'HookExecutionError',
    'PluginError',
    'PluginLoadError',
    'PluginNotLoadedError',
    'ConfigParseError',
]
