"""
depsolve_compat/analyzer.py
===========================
업그레이드 분석기 (엔진 + 플러그인 파이프라인 조립)

실행 순서:
1. before-analyze / after-analyze: 의존성 목록 확정 단계 (플러그인이 목록/extras 수정)
2. CompatibilityEngine.check_all: 메타데이터 수집 + 쌍 분석 + 업그레이드 분석
3. custom-check: 플러그인 자체 검사 결과를 report.custom_checks로 수집

전역 싱글턴 없이 AnalysisContext를 명시적으로 넘긴다.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .builtin_plugins import BUILTIN_PLUGINS
from .compatibility import CompatibilityEngine
from .hooks import Hook, HookPipeline
from .known_issues import KnownIssuesRegistry
from .models import CompatibilityReport
from .plugins import PluginConfig, PluginRegistry
from .providers import as_provider

logger = logging.getLogger(__name__)


@dataclass
class AnalysisContext:
    """파이프라인/플러그인/규칙 묶음 (프로세스 단위로 하나 생성)"""
    pipeline: HookPipeline
    plugins: PluginRegistry
    known_issues: KnownIssuesRegistry
    started: bool = False

    @classmethod
    def create(
        cls,
        config: Optional[PluginConfig] = None,
        builtin: bool = True,
        plugin_dir: Optional[Union[str, Path]] = None,
        known_issues: Optional[KnownIssuesRegistry] = None
    ) -> "AnalysisContext":
        """
        컨텍스트 생성 (플러그인은 등록만, 로드는 start()에서)

        Args:
            config: 플러그인 설정 (없으면 기본값)
            builtin: 기본 제공 플러그인 등록 여부
            plugin_dir: 추가 플러그인 디렉토리
            known_issues: 규칙 테이블 (없으면 기본 규칙)
        """
        known = known_issues if known_issues is not None else KnownIssuesRegistry.with_defaults()
        pipeline = HookPipeline()
        registry = PluginRegistry(pipeline, config=config, known_issues=known)

        if builtin:
            for plugin_class in BUILTIN_PLUGINS.values():
                registry.register(plugin_class)
        if plugin_dir is not None:
            registry.discover(plugin_dir)

        return cls(pipeline=pipeline, plugins=registry, known_issues=known)

    async def start(self):
        if not self.started:
            await self.plugins.load_all()
            self.started = True

    async def close(self):
        await self.plugins.unload_all()
        self.started = False


class UpgradeAnalyzer:
    """
    의존성 호환성/업그레이드 분석기

    provider: PackageMetadataProvider, 이름 → 메타데이터 매핑, 또는 fetch 함수
    """

    def __init__(self, provider: Any, context: Optional[AnalysisContext] = None):
        self.context = context or AnalysisContext.create(builtin=False)
        self.engine = CompatibilityEngine(
            provider=as_provider(provider),
            known_issues=self.context.known_issues,
            pipeline=self.context.pipeline
        )

    async def analyze(
        self,
        dependencies: Mapping[str, str],
        latest_versions: Optional[Mapping[str, Any]] = None,
        deep: bool = False
    ) -> CompatibilityReport:
        """전체 분석 실행"""
        await self.context.start()
        pipeline = self.context.pipeline

        analysis: Dict[str, Any] = {
            "dependencies": dict(dependencies),
            "latest_versions": dict(latest_versions or {}),
            "deep": deep,
            "extras": {},
        }
        analysis = _keep_mapping(Hook.BEFORE_ANALYZE, await pipeline.run(Hook.BEFORE_ANALYZE, analysis), analysis)
        analysis = _keep_mapping(Hook.AFTER_ANALYZE, await pipeline.run(Hook.AFTER_ANALYZE, analysis), analysis)

        dependencies = analysis.get("dependencies") or {}
        latest_versions = analysis.get("latest_versions") or {}

        report = await self.engine.check_all(
            dependencies, deep=deep, latest_versions=latest_versions
        )
        report.extras.update(analysis.get("extras") or {})

        checks = {
            "dependencies": dict(dependencies),
            "latest_versions": dict(latest_versions),
            "report": report,
            "custom_checks": list(report.custom_checks),
        }
        checks = _keep_mapping(Hook.CUSTOM_CHECK, await pipeline.run(Hook.CUSTOM_CHECK, checks), checks)
        if isinstance(checks.get("custom_checks"), list):
            report.custom_checks = checks["custom_checks"]

        logger.debug("Analysis finished: %d pairs, %d incompatible",
                     report.pair_count, len(report.incompatible))
        return report


def _keep_mapping(hook: Hook, value: Any, previous: Dict[str, Any]) -> Dict[str, Any]:
    """훅 결과가 매핑이 아니면 이전 값 유지"""
    if isinstance(value, Mapping):
        return dict(value)
    logger.warning("Ignoring %s result of type %s", hook.value, type(value).__name__)
    return previous


def analyze(
    dependencies: Mapping[str, str],
    metadata: Any,
    latest_versions: Optional[Mapping[str, Any]] = None,
    deep: bool = False,
    context: Optional[AnalysisContext] = None
) -> CompatibilityReport:
    """
    동기 편의 함수

    Args:
        dependencies: name → 선언 범위
        metadata: 메타데이터 매핑/공급자/함수
        latest_versions: name → {current, latest}
        deep: 쌍별 해석 세부 정보 포함
        context: 재사용할 AnalysisContext (없으면 플러그인 없이 실행)

    Returns:
        CompatibilityReport
    """
    async def _run() -> CompatibilityReport:
        analyzer = UpgradeAnalyzer(metadata, context)
        return await analyzer.analyze(dependencies, latest_versions=latest_versions, deep=deep)

    return asyncio.run(_run())


__all__ = [
    'AnalysisContext',
    'UpgradeAnalyzer',
    'analyze',
]
