"""
depsolve_compat/models.py
=========================
공통 타입 정의

설계 원칙:
- 외부 의존성 없음 (순수 Python 표준 라이브러리만)
- 순환 import 방지 (이 모듈은 다른 모듈을 import하지 않음)
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple


# =============================================================================
# 열거형 (Enums)
# =============================================================================

class PairStatus(Enum):
    """의존성 쌍 판정 결과"""
    COMPATIBLE = "compatible"
    INCOMPATIBLE = "incompatible"
    UNKNOWN = "unknown"


class CheckSource(Enum):
    """판정을 내린 검사 단계"""
    PEER = "peer"
    KNOWN_ISSUE = "known_issue"
    HOOK = "hook"
    UNRESOLVED = "unresolved"
    NONE = "none"


# =============================================================================
# 입력 데이터 클래스
# =============================================================================

@dataclass
class DependencySpec:
    """선언된 의존성 하나"""
    name: str
    declared_range: str

    @classmethod
    def from_mapping(cls, dependencies: Mapping[str, str]) -> List["DependencySpec"]:
        """name → range 매핑을 선언 순서대로 변환"""
        return [cls(name=name, declared_range=rng) for name, rng in dependencies.items()]

    def __str__(self) -> str:
        return f"{self.name}@{self.declared_range}"


@dataclass
class PackageVersionInfo:
    """특정 패키지의 특정 버전 메타데이터"""
    version: str
    peer_dependencies: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"version": self.version, "peer_dependencies": dict(self.peer_dependencies)}


@dataclass
class PackageMetadata:
    """
    패키지 메타데이터 (버전 → PackageVersionInfo)

    versions는 provider가 준 순서를 유지한다.
    nearest-version 탐색의 tie-break가 이 순서에 의존함.
    """
    name: str
    versions: Dict[str, PackageVersionInfo] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, name: str, data: Mapping[str, Any]) -> "PackageMetadata":
        """
        provider 페이로드 변환

        허용 형식:
            {"versions": {"1.0.0": {"peerDependencies": {"react": "^17.0.0"}}}}
        """
        versions: Dict[str, PackageVersionInfo] = {}
        for version, info in (data.get("versions") or {}).items():
            info = info or {}
            peers = info.get("peerDependencies")
            if peers is None:
                peers = info.get("peer_dependencies", {})
            versions[str(version)] = PackageVersionInfo(
                version=str(version),
                peer_dependencies=dict(peers or {})
            )
        return cls(name=name, versions=versions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "versions": {
                v: {"peerDependencies": dict(info.peer_dependencies)}
                for v, info in self.versions.items()
            }
        }


@dataclass
class LatestVersion:
    """현재/최신 버전 쌍"""
    current: str
    latest: str

    @classmethod
    def coerce(cls, value: Any) -> "LatestVersion":
        if isinstance(value, LatestVersion):
            return value
        return cls(current=str(value.get("current", "")), latest=str(value.get("latest", "")))


# =============================================================================
# 결과 데이터 클래스
# =============================================================================

def make_pair_key(name_a: str, name_b: str) -> Tuple[str, str]:
    """순서 무관 쌍 식별자 (이름에 어떤 문자가 있어도 충돌하지 않는 튜플)"""
    first, second = sorted((name_a, name_b))
    return (first, second)


@dataclass
class PairResult:
    """의존성 쌍 하나의 판정 결과"""
    name_a: str
    name_b: str
    version_a: Optional[str] = None
    version_b: Optional[str] = None
    status: PairStatus = PairStatus.COMPATIBLE
    reason: Optional[str] = None
    recommendation: Optional[Dict[str, str]] = None
    source: CheckSource = CheckSource.NONE
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def pair_key(self) -> Tuple[str, str]:
        return make_pair_key(self.name_a, self.name_b)

    @property
    def compatible(self) -> bool:
        return self.status == PairStatus.COMPATIBLE

    @property
    def label(self) -> str:
        left = f"{self.name_a}@{self.version_a}" if self.version_a else self.name_a
        right = f"{self.name_b}@{self.version_b}" if self.version_b else self.name_b
        return f"{left} + {right}"

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "pair_key": list(self.pair_key),
            "pair": self.label,
            "packages": [self.name_a, self.name_b],
            "versions": [self.version_a, self.version_b],
            "status": self.status.value,
            "compatible": self.compatible,
            "source": self.source.value,
        }
        if self.reason:
            result["reason"] = self.reason
        if self.recommendation:
            result["recommendation"] = dict(self.recommendation)
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        return self.label


@dataclass
class BlockingIssue:
    """업그레이드를 막는 이슈"""
    with_name: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"with": self.with_name, "reason": self.reason}


@dataclass
class UpgradeAssessment:
    """최신 버전 업그레이드 가능성 평가"""
    name: str
    current: str
    latest: str
    can_upgrade: bool = True
    blocking_issues: List[BlockingIssue] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "current": self.current,
            "latest": self.latest,
            "can_upgrade": self.can_upgrade,
            "blocking_issues": [b.to_dict() for b in self.blocking_issues],
        }


@dataclass
class RecommendationEntry:
    """추천 버전 (어떤 의존성과의 충돌을 풀기 위한 것인지 포함)"""
    with_name: str
    version: str

    def to_dict(self) -> Dict[str, str]:
        return {"with": self.with_name, "version": self.version}


@dataclass
class CompatibilityReport:
    """
    전체 호환성 분석 결과

    모든 쌍은 compatible / incompatible / unknown 중 정확히 하나에 속한다.
    fetch_errors는 쌍이 아니라 패키지 단위 실패 기록.
    """
    compatible: List[PairResult] = field(default_factory=list)
    incompatible: List[PairResult] = field(default_factory=list)
    unknown: List[PairResult] = field(default_factory=list)
    recommendations: Dict[str, List[RecommendationEntry]] = field(default_factory=dict)
    upgrade_analysis: Dict[str, UpgradeAssessment] = field(default_factory=dict)
    fetch_errors: Dict[str, str] = field(default_factory=dict)
    package_annotations: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    custom_checks: List[Dict[str, Any]] = field(default_factory=list)
    extras: Dict[str, Any] = field(default_factory=dict)

    @property
    def pair_count(self) -> int:
        return len(self.compatible) + len(self.incompatible) + len(self.unknown)

    @property
    def has_incompatibilities(self) -> bool:
        return bool(self.incompatible)

    def all_pairs(self) -> List[PairResult]:
        return self.compatible + self.incompatible + self.unknown

    def add(self, result: PairResult):
        """결과를 상태에 맞는 목록에 추가"""
        if result.status == PairStatus.COMPATIBLE:
            self.compatible.append(result)
        elif result.status == PairStatus.INCOMPATIBLE:
            self.incompatible.append(result)
            if result.recommendation:
                self._add_recommendation(result)
        else:
            self.unknown.append(result)

    def _add_recommendation(self, result: PairResult):
        rec = result.recommendation or {}
        for name, other in ((result.name_a, result.name_b), (result.name_b, result.name_a)):
            version = rec.get(name)
            if version:
                self.recommendations.setdefault(name, []).append(
                    RecommendationEntry(with_name=other, version=version)
                )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "compatible": [r.to_dict() for r in self.compatible],
            "incompatible": [r.to_dict() for r in self.incompatible],
            "unknown": [r.to_dict() for r in self.unknown],
            "recommendations": {
                name: [e.to_dict() for e in entries]
                for name, entries in self.recommendations.items()
            },
            "upgrade_analysis": {
                name: a.to_dict() for name, a in self.upgrade_analysis.items()
            },
            "fetch_errors": dict(self.fetch_errors),
            "package_annotations": self.package_annotations,
            "custom_checks": self.custom_checks,
            "extras": self.extras,
        }


# =============================================================================
# 규칙 / 훅 / 플러그인 관련 데이터 클래스
# =============================================================================

VersionPredicate = Callable[[str, str], bool]
Recommender = Callable[[str, str], Dict[str, str]]


@dataclass
class KnownIssueRule:
    """
    알려진 비호환 규칙

    predicate(version_a, version_b)가 True면 비호환.
    version_a/b는 packages 튜플 순서를 따른다.
    """
    packages: Tuple[str, str]
    predicate: VersionPredicate
    message: str
    recommend: Optional[Recommender] = None
    owner: Optional[str] = None

    def matches(self, name_a: str, name_b: str) -> bool:
        """순서 무관 이름 쌍 비교"""
        first, second = self.packages
        return (first, second) == (name_a, name_b) or (first, second) == (name_b, name_a)


@dataclass
class HookRegistration:
    """훅 핸들러 등록 정보"""
    hook_name: str
    handler: Callable[[Any], Any]
    plugin_id: Optional[str] = None


@dataclass
class PluginDescriptor:
    """플러그인 상태 요약"""
    id: str
    version: str
    enabled: bool = True
    config: Dict[str, Any] = field(default_factory=dict)
    registered_hooks: List[str] = field(default_factory=list)
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "version": self.version,
            "enabled": self.enabled,
            "config": self.config,
            "registered_hooks": list(self.registered_hooks),
            "description": self.description,
        }


@dataclass
class ReportData:
    """format-report 훅을 거친 리포트 데이터"""
    report: CompatibilityReport
    content: str = ""
    format: str = "console"
    output_path: Optional[str] = None
    additional_reports: List[str] = field(default_factory=list)
