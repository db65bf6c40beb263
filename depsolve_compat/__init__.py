"""
depsolve_compat - 의존성 호환성 분석기
======================================

기능:
1. 의존성 쌍 호환성: peerDependencies 양방향 검사 + Known Issues 규칙
2. 추천 버전: 충돌을 실제로 해소하는 가장 높은 알려진 버전
3. 업그레이드 분석: 최신 버전으로 올렸을 때 막히는 의존성
4. 플러그인: 고정된 훅 지점에서 분석 결과 관찰/수정 (timeout, 실패 격리)

사용법:
    # CLI
    python -m depsolve_compat check snapshot.json
    python -m depsolve_compat check snapshot.yaml --deep --format markdown
    python -m depsolve_compat plugins list

    # Python API
    from depsolve_compat import analyze

    report = analyze(
        {"react": "^17.0.2", "react-dom": "^16.14.0"},
        metadata={"react": {...}, "react-dom": {...}},
    )
    for pair in report.incompatible:
        print(pair.label, pair.reason, pair.recommendation)
"""

__version__ = "0.1.0"

# 모델
from .models import (
    # Enums
    PairStatus, CheckSource,

    # Data classes
    DependencySpec, PackageVersionInfo, PackageMetadata, LatestVersion,
    PairResult, BlockingIssue, UpgradeAssessment, RecommendationEntry,
    CompatibilityReport, KnownIssueRule, HookRegistration,
    PluginDescriptor, ReportData, make_pair_key,
)

# 예외
from .errors import (
    DepsolveError, MetadataFetchError, VersionParseError,
    HookExecutionError, PluginError, PluginLoadError,
    PluginNotLoadedError, ConfigParseError,
)

# 버전
from .versioning import (
    clean_version, compare, satisfies, max_satisfying, distance,
)

# 메타데이터 공급자
from .providers import (
    PackageMetadataProvider, StaticMetadataProvider,
    CallableMetadataProvider, as_provider,
)

# Known Issues
from .known_issues import (
    KnownIssuesRegistry, KnownIssueMatch, DEFAULT_RULES,
    matching_minor_rule, matching_major_rule, minimum_version_rule,
)

# 엔진
from .compatibility import CompatibilityEngine, find_nearest_version

# 훅 / 플러그인
from .hooks import Hook, HOOK_NAMES, GlobalConfig, HookPipeline
from .plugins import BasePlugin, PluginConfig, PluginSettings, PluginRegistry
from .builtin_plugins import (
    ReactEcosystemPlugin, SecurityAuditPlugin, BUILTIN_PLUGINS,
)

# 분석기
from .analyzer import AnalysisContext, UpgradeAnalyzer, analyze

# 리포터
from .reporters import (
    prepare_report, ConsoleReporter, MarkdownReporter, JsonReporter,
)

# CLI
from .cli import main as cli_main

__all__ = [
    # Version
    '__version__',

    # Enums
    'PairStatus', 'CheckSource',

    # Models
    'DependencySpec', 'PackageVersionInfo', 'PackageMetadata', 'LatestVersion',
    'PairResult', 'BlockingIssue', 'UpgradeAssessment', 'RecommendationEntry',
    'CompatibilityReport', 'KnownIssueRule', 'HookRegistration',
    'PluginDescriptor', 'ReportData', 'make_pair_key',

    # Errors
    'DepsolveError', 'MetadataFetchError', 'VersionParseError',
    'HookExecutionError', 'PluginError', 'PluginLoadError',
    'PluginNotLoadedError', 'ConfigParseError',

    # Versioning
    'clean_version', 'compare', 'satisfies', 'max_satisfying', 'distance',

    # Providers
    'PackageMetadataProvider', 'StaticMetadataProvider',
    'CallableMetadataProvider', 'as_provider',

    # Known Issues
    'KnownIssuesRegistry', 'KnownIssueMatch', 'DEFAULT_RULES',
    'matching_minor_rule', 'matching_major_rule', 'minimum_version_rule',

    # Engine
    'CompatibilityEngine', 'find_nearest_version',

    # Hooks / Plugins
    'Hook', 'HOOK_NAMES', 'GlobalConfig', 'HookPipeline',
    'BasePlugin', 'PluginConfig', 'PluginSettings', 'PluginRegistry',
    'ReactEcosystemPlugin', 'SecurityAuditPlugin', 'BUILTIN_PLUGINS',

    # Analyzer
    'AnalysisContext', 'UpgradeAnalyzer', 'analyze',

    # Reporters
    'prepare_report', 'ConsoleReporter', 'MarkdownReporter', 'JsonReporter',

    # CLI
    'cli_main',
]
