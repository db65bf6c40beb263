"""
depsolve_compat/plugins.py
==========================
플러그인 레지스트리

구성:
1. BasePlugin: 플러그인 기본 클래스 (훅/규칙 등록 편의 메서드)
2. PluginConfig: 영속 설정 (.depsolve/plugins.yaml)
3. PluginRegistry: 등록 → 로드 → 언로드 생명주기

로드 정책:
- 비활성 플러그인은 인스턴스화하지 않음 (핸들러 0개)
- 로드 실패는 플러그인 단위로 격리, 부분 등록된 핸들러/규칙은 제거
- 플러그인 코드 자체는 신뢰함 (샌드박스 없음)

설정 파일 형식:
    global:
      timeoutMs: 5000
      loggingEnabled: true
      failOnPluginError: false
    plugins:
      security-audit-plugin:
        enabled: true
        config: {}
"""

import dataclasses
import hashlib
import importlib.util
import inspect
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import ModuleType
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import yaml

from .errors import (
    ConfigParseError, HookExecutionError, PluginError,
    PluginLoadError, PluginNotLoadedError,
)
from .hooks import GlobalConfig, Handler, HookName, HookPipeline
from .known_issues import KnownIssuesRegistry
from .models import HookRegistration, KnownIssueRule, PluginDescriptor

logger = logging.getLogger(__name__)


# =============================================================================
# BasePlugin
# =============================================================================

class BasePlugin:
    """
    플러그인 기본 클래스

    하위 클래스는 id/version을 클래스 속성으로 선언하고
    initialize()에서 훅과 규칙을 등록한다. initialize/cleanup은
    동기 또는 async 모두 가능.
    """
    id: str = ""
    version: str = "1.0.0"
    description: str = ""
    author: str = ""

    def __init__(self):
        self.config: Dict[str, Any] = {}
        self.pipeline: Optional[HookPipeline] = None
        self.known_issues: Optional[KnownIssuesRegistry] = None

    def attach(self, pipeline: HookPipeline, known_issues: Optional[KnownIssuesRegistry] = None):
        self.pipeline = pipeline
        self.known_issues = known_issues

    def detach(self):
        self.pipeline = None
        self.known_issues = None

    def initialize(self, pipeline: HookPipeline):
        """훅 등록 지점 (기본: 아무것도 하지 않음)"""

    def cleanup(self):
        """언로드 시 호출"""

    # -------------------------------------------------------------------------
    # 설정
    # -------------------------------------------------------------------------

    def set_config(self, config: Mapping[str, Any]):
        self.config = {**self.config, **dict(config)}

    def get_config_value(self, key: str, default: Any = None) -> Any:
        return self.config.get(key, default)

    # -------------------------------------------------------------------------
    # 등록 편의 메서드
    # -------------------------------------------------------------------------

    def register_hook(self, hook_name: HookName, handler: Handler) -> HookRegistration:
        """소유 플러그인 id를 기록하며 핸들러 등록"""
        if self.pipeline is None:
            raise PluginError(f"Plugin '{self.id}' is not attached to a pipeline")
        return self.pipeline.register(hook_name, handler, plugin_id=self.id)

    def add_known_issue(self, rule: KnownIssueRule) -> Optional[KnownIssueRule]:
        """Known Issue 규칙 추가 (언로드 시 함께 제거됨)"""
        if self.known_issues is None:
            logger.warning("Plugin %s has no known-issues registry; rule %s/%s ignored",
                           self.id, *rule.packages)
            return None
        return self.known_issues.register(dataclasses.replace(rule, owner=self.id))

    def describe(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "description": self.description,
            "author": self.author,
            "config": dict(self.config),
        }


# =============================================================================
# 영속 설정
# =============================================================================

@dataclass
class PluginSettings:
    """플러그인별 설정"""
    enabled: bool = True
    config: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PluginSettings":
        config = data.get("config") or {}
        if not isinstance(config, Mapping):
            raise TypeError("plugin config must be a mapping")
        return cls(enabled=data.get("enabled", True) is not False, config=dict(config))

    def to_dict(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "config": dict(self.config)}


@dataclass
class PluginConfig:
    """
    플러그인 설정 파일

    JSON도 YAML의 부분집합이므로 같은 로더로 읽는다.
    """
    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    plugins: Dict[str, PluginSettings] = field(default_factory=dict)

    @classmethod
    def default_path(cls, project_path: Union[str, Path] = ".") -> Path:
        return Path(project_path) / ".depsolve" / "plugins.yaml"

    @classmethod
    def load(cls, path: Union[str, Path]) -> "PluginConfig":
        """
        설정 로드

        파일 없음 → 기본값, 파싱 실패 → 경고 후 기본값
        """
        path = Path(path)
        if not path.exists():
            return cls()

        try:
            return cls.parse(path)
        except ConfigParseError as e:
            logger.warning("%s; using default plugin configuration", e)
            return cls()

    @classmethod
    def parse(cls, path: Path) -> "PluginConfig":
        """
        Raises:
            ConfigParseError: YAML 오류 또는 잘못된 구조
        """
        try:
            with open(path, encoding='utf-8') as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigParseError(str(path), str(e)) from e

        if not isinstance(data, Mapping):
            raise ConfigParseError(str(path), "top level must be a mapping")

        try:
            return cls.from_dict(data)
        except (AttributeError, TypeError, ValueError) as e:
            raise ConfigParseError(str(path), str(e)) from e

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PluginConfig":
        global_data = data.get("global") or {}
        plugins_data = data.get("plugins") or {}
        if not isinstance(global_data, Mapping) or not isinstance(plugins_data, Mapping):
            raise TypeError("'global' and 'plugins' must be mappings")

        return cls(
            global_config=GlobalConfig.from_dict(global_data),
            plugins={
                str(plugin_id): PluginSettings.from_dict(settings or {})
                for plugin_id, settings in plugins_data.items()
            }
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "global": self.global_config.to_dict(),
            "plugins": {pid: s.to_dict() for pid, s in self.plugins.items()},
        }

    def save(self, path: Union[str, Path]) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w', encoding='utf-8') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, allow_unicode=True, sort_keys=False)

    def is_enabled(self, plugin_id: str) -> bool:
        settings = self.plugins.get(plugin_id)
        return settings.enabled if settings else True

    def config_for(self, plugin_id: str) -> Dict[str, Any]:
        settings = self.plugins.get(plugin_id)
        return dict(settings.config) if settings else {}

    def set_enabled(self, plugin_id: str, enabled: bool):
        self.plugins.setdefault(plugin_id, PluginSettings()).enabled = enabled

    def set_plugin_config(self, plugin_id: str, config: Mapping[str, Any]):
        """기존 설정에 병합"""
        settings = self.plugins.setdefault(plugin_id, PluginSettings())
        settings.config.update(dict(config))


# =============================================================================
# 디렉토리 스캔
# =============================================================================

def load_plugin_module(module_path: Path) -> ModuleType:
    """
    파일 경로로 모듈 import

    모듈 이름은 경로 해시로 고정 (재시작해도 동일).
    exec_module 전에 sys.modules에 등록해야 dataclass 등이 동작함.
    """
    module_path = Path(module_path).resolve()
    path_key = str(module_path).replace("\\", "/").lower().encode("utf-8")
    path_hash = hashlib.sha1(path_key).hexdigest()[:16]
    module_name = f"depsolve_plugin_{module_path.stem.replace('-', '_')}_{path_hash}"

    spec = importlib.util.spec_from_file_location(module_name, str(module_path))
    if spec is None or spec.loader is None:
        raise ImportError(f"Cannot create module spec for {module_path}")

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception:
        sys.modules.pop(module_name, None)
        raise
    return module


def plugin_candidates(module: ModuleType) -> List[Any]:
    """
    모듈에서 플러그인 후보 추출

    1. PLUGIN 심볼 (클래스, 인스턴스, 또는 그 목록)
    2. 없으면 모듈에 정의된 BasePlugin 하위 클래스
    """
    exported = getattr(module, "PLUGIN", None)
    if exported is not None:
        return list(exported) if isinstance(exported, (list, tuple)) else [exported]

    return [
        obj for _, obj in inspect.getmembers(module, inspect.isclass)
        if issubclass(obj, BasePlugin) and obj is not BasePlugin
        and obj.__module__ == module.__name__
    ]


# =============================================================================
# Registry
# =============================================================================

PluginFactory = Callable[[], BasePlugin]


class PluginRegistry:
    """
    플러그인 생명주기 관리

    등록(register/discover)과 로드(load_all)는 분리되어 있다.
    등록은 팩토리만 기록하고, 실제 인스턴스화는 load_all에서 한다.
    """

    def __init__(
        self,
        pipeline: HookPipeline,
        config: Optional[PluginConfig] = None,
        known_issues: Optional[KnownIssuesRegistry] = None
    ):
        self.pipeline = pipeline
        self.config = config or PluginConfig()
        self.pipeline.config = self.config.global_config
        self.known_issues = known_issues

        self._factories: Dict[str, PluginFactory] = {}
        self._active: Dict[str, BasePlugin] = {}
        self.load_errors: Dict[str, str] = {}

    # -------------------------------------------------------------------------
    # 등록
    # -------------------------------------------------------------------------

    def register(self, plugin: Union[str, type, BasePlugin],
                 factory: Optional[PluginFactory] = None) -> str:
        """
        플러그인 팩토리 등록

        Args:
            plugin: 플러그인 id (factory 필수), BasePlugin 하위 클래스, 또는 인스턴스
            factory: 인자 없이 BasePlugin을 반환하는 callable

        Returns:
            등록된 플러그인 id
        """
        if isinstance(plugin, str):
            if factory is None:
                raise TypeError(f"A factory is required to register plugin '{plugin}'")
            plugin_id = plugin
        elif isinstance(plugin, type) and issubclass(plugin, BasePlugin):
            plugin_id = plugin.id
            factory = factory or plugin
        elif isinstance(plugin, BasePlugin):
            plugin_id = plugin.id
            factory = factory or (lambda: plugin)
        else:
            raise TypeError(f"Cannot register {type(plugin).__name__} as a plugin")

        if not plugin_id:
            raise PluginLoadError("<unnamed>", "plugin id is required")

        if plugin_id in self._factories:
            logger.warning("Plugin %s registered twice; keeping the latest", plugin_id)
        self._factories[plugin_id] = factory
        return plugin_id

    def discover(self, directory: Union[str, Path]) -> List[str]:
        """
        디렉토리의 *.py 스캔 후 등록 (_로 시작하는 파일 제외)

        import 실패한 모듈은 경고 후 건너뜀.
        """
        directory = Path(directory)
        if not directory.is_dir():
            logger.warning("Plugin directory not found: %s", directory)
            return []

        found: List[str] = []
        for py in sorted(directory.glob("*.py")):
            if py.name.startswith("_"):
                continue

            try:
                module = load_plugin_module(py)
            except Exception as e:
                logger.warning("Failed to import plugin module %s: %s", py.name, e)
                continue

            candidates = plugin_candidates(module)
            if not candidates:
                logger.warning("Plugin module %s exports no plugin; skipped", py.name)

            for candidate in candidates:
                try:
                    found.append(self.register(candidate))
                except (PluginError, TypeError) as e:
                    logger.warning("Skipping plugin in %s: %s", py.name, e)

        return found

    @property
    def registered_ids(self) -> List[str]:
        return list(self._factories)

    # -------------------------------------------------------------------------
    # 로드 / 언로드
    # -------------------------------------------------------------------------

    async def load_all(self) -> List[str]:
        """
        등록된 플러그인을 등록 순서대로 로드

        Returns:
            활성 플러그인 id 목록
        """
        for plugin_id, factory in list(self._factories.items()):
            if plugin_id in self._active:
                continue

            if not self.config.is_enabled(plugin_id):
                logger.warning("Plugin %s is disabled; skipping", plugin_id)
                continue

            try:
                await self._load(plugin_id, factory)
            except PluginLoadError as e:
                logger.error("%s", e)
                self.load_errors[plugin_id] = e.reason
                self._strip(plugin_id)
                if self.config.global_config.fail_on_plugin_error:
                    raise

        return self.active_ids

    async def _load(self, plugin_id: str, factory: PluginFactory):
        try:
            plugin = factory()
        except Exception as e:
            raise PluginLoadError(plugin_id, f"cannot instantiate: {e}") from e

        self._validate(plugin_id, plugin)

        plugin.set_config(self.config.config_for(plugin_id))
        plugin.attach(self.pipeline, self.known_issues)

        try:
            outcome = plugin.initialize(self.pipeline)
            await self.pipeline.call_with_timeout(outcome, f"{plugin_id}.initialize", plugin_id)
        except HookExecutionError as e:
            plugin.detach()
            raise PluginLoadError(plugin_id, f"initialize failed: {e.reason}") from e
        except Exception as e:
            plugin.detach()
            raise PluginLoadError(plugin_id, f"initialize failed: {str(e) or type(e).__name__}") from e

        self._active[plugin_id] = plugin
        self.load_errors.pop(plugin_id, None)
        if self.config.global_config.logging_enabled:
            logger.info("Loaded plugin %s@%s", plugin_id, plugin.version)

    @staticmethod
    def _validate(plugin_id: str, plugin: Any):
        if not isinstance(plugin, BasePlugin):
            raise PluginLoadError(plugin_id, f"factory returned {type(plugin).__name__}, not a plugin")
        if not isinstance(plugin.id, str) or not plugin.id:
            raise PluginLoadError(plugin_id, "plugin id must be a non-empty string")
        if plugin.id != plugin_id:
            raise PluginLoadError(plugin_id, f"plugin reports id '{plugin.id}'")
        if not isinstance(plugin.version, str) or not plugin.version:
            raise PluginLoadError(plugin_id, "plugin version must be a non-empty string")
        if not callable(getattr(plugin, "initialize", None)):
            raise PluginLoadError(plugin_id, "plugin has no initialize()")

    def _strip(self, plugin_id: str) -> int:
        """플러그인 소유 핸들러/규칙 제거"""
        removed = self.pipeline.unregister_plugin(plugin_id)
        if self.known_issues is not None:
            removed += self.known_issues.remove_owner(plugin_id)
        return removed

    async def unload(self, plugin_id: str):
        """
        Raises:
            PluginNotLoadedError: 로드되지 않은 플러그인
        """
        plugin = self._active.pop(plugin_id, None)
        if plugin is None:
            raise PluginNotLoadedError(plugin_id)

        try:
            outcome = plugin.cleanup()
            await self.pipeline.call_with_timeout(outcome, f"{plugin_id}.cleanup", plugin_id)
        except Exception as e:
            logger.error("Cleanup of plugin %s failed: %s", plugin_id, e)

        self._strip(plugin_id)
        plugin.detach()
        if self.config.global_config.logging_enabled:
            logger.info("Unloaded plugin %s", plugin_id)

    async def unload_all(self):
        for plugin_id in reversed(self.active_ids):
            await self.unload(plugin_id)

    # -------------------------------------------------------------------------
    # 조회
    # -------------------------------------------------------------------------

    def get(self, plugin_id: str) -> BasePlugin:
        try:
            return self._active[plugin_id]
        except KeyError:
            raise PluginNotLoadedError(plugin_id) from None

    def is_loaded(self, plugin_id: str) -> bool:
        return plugin_id in self._active

    @property
    def active_ids(self) -> List[str]:
        return list(self._active)

    def descriptors(self) -> List[PluginDescriptor]:
        """등록된 모든 플러그인 상태 (로드 안 된 것 포함)"""
        result = []
        for plugin_id, factory in self._factories.items():
            plugin = self._active.get(plugin_id)
            source = plugin if plugin is not None else factory
            result.append(PluginDescriptor(
                id=plugin_id,
                version=str(getattr(source, "version", "") or ""),
                enabled=self.config.is_enabled(plugin_id),
                config=self.config.config_for(plugin_id),
                registered_hooks=self.pipeline.hooks_for_plugin(plugin_id),
                description=str(getattr(source, "description", "") or ""),
            ))
        return result


__all__ = [
    'BasePlugin',
    'PluginSettings',
    'PluginConfig',
    'PluginRegistry',
    'load_plugin_module',
    'plugin_candidates',
]
