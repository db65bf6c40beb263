"""
depsolve_compat/compatibility.py
================================
의존성 쌍 호환성 엔진

분석 순서 (쌍 하나):
1. 선언 범위 → 정규 버전 (실패 시 unknown)
2. 정확한 버전 메타데이터, 없으면 가장 가까운 버전 메타데이터 (없으면 unknown)
3. peerDependencies 양방향 검사 (B가 요구하는 A 범위, A가 요구하는 B 범위)
4. Known Issues 규칙 (first-match)
5. 위에 걸리지 않으면 compatible

실패 정책:
- 패키지 하나의 메타데이터 조회 실패가 다른 패키지/쌍 분석을 중단시키지 않음
- 해당 패키지가 포함된 쌍은 실패 사유와 함께 unknown
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import MetadataFetchError, VersionParseError
from .hooks import Hook, HookPipeline
from .known_issues import KnownIssuesRegistry
from .models import (
    BlockingIssue, CheckSource, CompatibilityReport, LatestVersion,
    PackageMetadata, PackageVersionInfo, PairResult, PairStatus,
    UpgradeAssessment,
)
from .providers import PackageMetadataProvider, as_provider
from .versioning import clean_version, distance, gt, satisfies, try_parse, version_key

logger = logging.getLogger(__name__)


@dataclass
class PeerConflict:
    """충족되지 않은 peer 범위"""
    constrained: str        # 범위를 만족해야 하는 패키지
    required_by: str        # 범위를 선언한 패키지
    requirement: str
    current: str


@dataclass
class GatheredMetadata:
    """메타데이터 수집 결과"""
    metadata: Dict[str, PackageMetadata] = field(default_factory=dict)
    fetch_errors: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, Dict[str, Any]] = field(default_factory=dict)


def find_nearest_version(metadata: PackageMetadata, version: str) -> Optional[str]:
    """
    가장 가까운 알려진 버전

    거리: versioning.distance (major, minor, patch 수치 거리)
    동률: versions 순회 순서상 먼저 나온 버전
    """
    if try_parse(version) is None:
        return None

    best: Optional[str] = None
    best_distance: Optional[int] = None
    for candidate in metadata.versions:
        if try_parse(candidate) is None:
            continue
        d = distance(candidate, version)
        if best_distance is None or d < best_distance:
            best, best_distance = candidate, d
    return best


def _coerce_metadata(metadata: Mapping[str, Any]) -> GatheredMetadata:
    """미리 수집한 메타데이터 변환 (잘못된 항목은 패키지 단위 오류로 기록)"""
    gathered = GatheredMetadata()
    for name, value in metadata.items():
        if isinstance(value, PackageMetadata):
            gathered.metadata[name] = value
            continue
        if not isinstance(value, Mapping):
            gathered.fetch_errors[name] = f"malformed metadata ({type(value).__name__})"
            continue
        try:
            gathered.metadata[name] = PackageMetadata.from_dict(name, value)
        except (AttributeError, TypeError, ValueError) as e:
            gathered.fetch_errors[name] = f"malformed metadata ({e})"

    for name, reason in gathered.fetch_errors.items():
        logger.warning("Ignoring metadata for %s: %s", name, reason)
    return gathered


class CompatibilityEngine:
    """
    호환성 분석기

    pipeline이 없으면 모든 훅은 항등 함수로 동작한다.
    """

    def __init__(
        self,
        provider: Optional[PackageMetadataProvider] = None,
        known_issues: Optional[KnownIssuesRegistry] = None,
        pipeline: Optional[HookPipeline] = None
    ):
        self.provider = as_provider(provider) if provider is not None else None
        self.known_issues = known_issues if known_issues is not None else KnownIssuesRegistry.with_defaults()
        self.pipeline = pipeline

    async def _run_hook(self, hook: Hook, data: Any) -> Any:
        if self.pipeline is None:
            return data
        return await self.pipeline.run(hook, data)

    # =========================================================================
    # 메타데이터 수집
    # =========================================================================

    async def gather_metadata(self, dependencies: Mapping[str, str]) -> GatheredMetadata:
        """패키지별 메타데이터 순차 조회 (실패는 패키지 단위로 기록)"""
        gathered = GatheredMetadata()

        for name, declared in dependencies.items():
            meta: Optional[PackageMetadata] = None
            if self.provider is None:
                gathered.fetch_errors[name] = "no metadata provider configured"
            else:
                try:
                    meta = await self.provider.fetch(name)
                    gathered.metadata[name] = meta
                except MetadataFetchError as e:
                    gathered.fetch_errors[name] = e.reason
                except Exception as e:
                    gathered.fetch_errors[name] = str(e) or type(e).__name__

            if name in gathered.fetch_errors:
                logger.warning("Cannot fetch metadata for %s: %s", name, gathered.fetch_errors[name])

            payload = await self._run_hook(Hook.ANALYZE_PACKAGE, {
                "package_name": name,
                "declared_range": declared,
                "metadata": meta,
                "fetch_error": gathered.fetch_errors.get(name),
            })
            if isinstance(payload, Mapping):
                gathered.annotations[name] = {
                    k: v for k, v in payload.items() if k != "metadata"
                }

        return gathered

    # =========================================================================
    # 전체 분석
    # =========================================================================

    async def check_all(
        self,
        dependencies: Mapping[str, str],
        deep: bool = False,
        latest_versions: Optional[Mapping[str, Any]] = None,
        metadata: Optional[Mapping[str, Any]] = None
    ) -> CompatibilityReport:
        """
        모든 의존성 쌍 분석

        Args:
            dependencies: name → 선언 범위 (순서가 쌍 순서를 결정)
            deep: 쌍마다 메타데이터 해석 세부 정보 첨부
            latest_versions: name → {current, latest} (있으면 업그레이드 분석)
            metadata: 미리 수집한 메타데이터 (없으면 provider로 조회)

        Returns:
            CompatibilityReport (C(n,2)개 쌍이 각각 정확히 한 목록에 존재)
        """
        request = await self._run_hook(Hook.BEFORE_COMPATIBILITY_CHECK, {
            "dependencies": dict(dependencies),
            "latest_versions": dict(latest_versions or {}),
            "deep": deep,
        })
        if isinstance(request, Mapping):
            if isinstance(request.get("dependencies"), Mapping):
                dependencies = request["dependencies"]
            if isinstance(request.get("latest_versions"), Mapping):
                latest_versions = request["latest_versions"]

        report = CompatibilityReport()

        if metadata is None:
            gathered = await self.gather_metadata(dependencies)
            metadata_map = gathered.metadata
            report.fetch_errors = dict(gathered.fetch_errors)
            report.package_annotations = gathered.annotations
        else:
            gathered = _coerce_metadata(metadata)
            metadata_map = gathered.metadata
            report.fetch_errors = dict(gathered.fetch_errors)

        names = list(dependencies)
        for i in range(len(names)):
            for j in range(i + 1, len(names)):
                name_a, name_b = names[i], names[j]
                result = self.check_pair(
                    name_a, dependencies[name_a],
                    name_b, dependencies[name_b],
                    metadata_map, report.fetch_errors, deep=deep
                )
                result = await self._apply_pair_hook(
                    result, dependencies[name_a], dependencies[name_b]
                )
                logger.debug("%s → %s", result.label, result.status.value)
                report.add(result)

        if latest_versions:
            report.upgrade_analysis = self.upgrade_analysis(dependencies, latest_versions, metadata_map)

        updated = await self._run_hook(Hook.AFTER_COMPATIBILITY_CHECK, report)
        if isinstance(updated, CompatibilityReport):
            report = updated
        else:
            logger.warning("Ignoring %s result of type %s",
                           Hook.AFTER_COMPATIBILITY_CHECK.value, type(updated).__name__)

        return report

    async def _apply_pair_hook(self, result: PairResult, range_a: str, range_b: str) -> PairResult:
        """check-pair-compatibility 훅 결과를 PairResult에 반영"""
        if self.pipeline is None or not self.pipeline.has_handlers(Hook.CHECK_PAIR_COMPATIBILITY):
            return result

        original = {
            "pair_key": result.pair_key,
            "dep1": result.name_a,
            "version1": result.version_a,
            "range1": range_a,
            "dep2": result.name_b,
            "version2": result.version_b,
            "range2": range_b,
            "compatible": result.compatible,
            "status": result.status.value,
            "reason": result.reason,
            "recommendation": dict(result.recommendation) if result.recommendation else None,
        }
        payload = await self.pipeline.run(Hook.CHECK_PAIR_COMPATIBILITY, dict(original))

        if not isinstance(payload, Mapping):
            logger.warning("Ignoring %s result of type %s",
                           Hook.CHECK_PAIR_COMPATIBILITY.value, type(payload).__name__)
            return result

        status = result.status
        new_status = payload.get("status")
        if new_status != original["status"] and new_status in {s.value for s in PairStatus}:
            status = PairStatus(new_status)
        elif bool(payload.get("compatible")) != original["compatible"]:
            status = PairStatus.COMPATIBLE if payload.get("compatible") else PairStatus.INCOMPATIBLE

        if status != result.status:
            result.status = status
            result.source = CheckSource.HOOK

        result.reason = payload.get("reason") or (None if result.compatible else result.reason)

        recommendation = payload.get("recommendation")
        if result.compatible or not isinstance(recommendation, Mapping):
            result.recommendation = None
        else:
            result.recommendation = {str(k): str(v) for k, v in recommendation.items()} or None

        extra = {k: v for k, v in payload.items() if k not in original}
        if extra:
            result.details.setdefault("hook", {}).update(extra)

        return result

    # =========================================================================
    # 쌍 분석
    # =========================================================================

    def check_pair(
        self,
        name_a: str, range_a: str,
        name_b: str, range_b: str,
        metadata: Mapping[str, PackageMetadata],
        fetch_errors: Optional[Mapping[str, str]] = None,
        deep: bool = False
    ) -> PairResult:
        """의존성 쌍 하나 판정 (예외를 던지지 않음)"""
        result = PairResult(name_a=name_a, name_b=name_b)
        fetch_errors = fetch_errors or {}

        try:
            result.version_a = clean_version(range_a)
            result.version_b = clean_version(range_b)
        except VersionParseError as e:
            return self._unknown(result, str(e))

        va, vb = result.version_a, result.version_b
        info_a, resolved_a = self._resolve(name_a, va, metadata)
        info_b, resolved_b = self._resolve(name_b, vb, metadata)

        if deep:
            result.details["resolved"] = {name_a: resolved_a, name_b: resolved_b}

        if info_a is None or info_b is None:
            missing = [n for n, info in ((name_a, info_a), (name_b, info_b)) if info is None]
            reasons = [
                f"{n}: {fetch_errors[n]}" if n in fetch_errors else f"{n}: no version metadata"
                for n in missing
            ]
            return self._unknown(result, "Incomplete dependency metadata (" + "; ".join(reasons) + ")")

        conflict = self._peer_conflict(name_a, va, info_a, name_b, vb, info_b)
        if conflict:
            result.status = PairStatus.INCOMPATIBLE
            result.source = CheckSource.PEER
            result.reason = (
                f"{conflict.required_by} requires {conflict.constrained}@{conflict.requirement}, "
                f"but current version is {conflict.current}"
            )
            result.recommendation = self._recommend_peer_fix(conflict, name_a, va, name_b, vb, metadata)
            return result

        match = self.known_issues.evaluate(name_a, va, name_b, vb)
        if match:
            result.status = PairStatus.INCOMPATIBLE
            result.source = CheckSource.KNOWN_ISSUE
            result.reason = match.reason
            result.recommendation = self._verified(match.recommendation, name_a, name_b, metadata)
            return result

        result.status = PairStatus.COMPATIBLE
        return result

    @staticmethod
    def _unknown(result: PairResult, reason: str) -> PairResult:
        result.status = PairStatus.UNKNOWN
        result.source = CheckSource.UNRESOLVED
        result.reason = reason
        return result

    @staticmethod
    def _resolve(name: str, version: str,
                 metadata: Mapping[str, PackageMetadata]) -> Tuple[Optional[PackageVersionInfo], Optional[str]]:
        """정확한 버전 → 가장 가까운 버전 순으로 메타데이터 해석"""
        meta = metadata.get(name)
        if meta is None or not meta.versions:
            return None, None

        info = meta.versions.get(version)
        if info is not None:
            return info, version

        nearest = find_nearest_version(meta, version)
        if nearest is None:
            return None, None
        return meta.versions[nearest], nearest

    @staticmethod
    def _peer_conflict(name_a: str, va: str, info_a: PackageVersionInfo,
                       name_b: str, vb: str, info_b: PackageVersionInfo) -> Optional[PeerConflict]:
        requirement = info_b.peer_dependencies.get(name_a)
        if requirement and not satisfies(va, requirement):
            return PeerConflict(constrained=name_a, required_by=name_b,
                                requirement=requirement, current=va)

        requirement = info_a.peer_dependencies.get(name_b)
        if requirement and not satisfies(vb, requirement):
            return PeerConflict(constrained=name_b, required_by=name_a,
                                requirement=requirement, current=vb)

        return None

    def _recommend_peer_fix(self, conflict: PeerConflict,
                            name_a: str, va: str, name_b: str, vb: str,
                            metadata: Mapping[str, PackageMetadata]) -> Optional[Dict[str, str]]:
        """
        요구 범위를 만족하는 가장 높은 알려진 버전

        후보를 대입했을 때 쌍 전체가 호환되는 경우만 추천한다.
        """
        meta = metadata.get(conflict.constrained)
        if meta is None:
            return None

        candidates = [
            v for v in meta.versions
            if try_parse(v) is not None and satisfies(v, conflict.requirement)
        ]
        candidates.sort(key=version_key, reverse=True)

        for candidate in candidates:
            if conflict.constrained == name_a:
                ca, cb = candidate, vb
            else:
                ca, cb = va, candidate
            if self._is_clear(name_a, ca, name_b, cb, metadata):
                return {name_a: ca, name_b: cb}

        return None

    def _verified(self, recommendation: Optional[Dict[str, str]],
                  name_a: str, name_b: str,
                  metadata: Mapping[str, PackageMetadata]) -> Optional[Dict[str, str]]:
        """규칙 추천을 쌍 전체(peer + 규칙)에 다시 대입해 통과할 때만 유지"""
        if not recommendation:
            return None
        va, vb = recommendation.get(name_a), recommendation.get(name_b)
        if va is None or vb is None or not self._is_clear(name_a, va, name_b, vb, metadata):
            logger.debug("Dropping known-issue recommendation for %s/%s: pair still conflicts",
                         name_a, name_b)
            return None
        return recommendation

    def _is_clear(self, name_a: str, va: str, name_b: str, vb: str,
                  metadata: Mapping[str, PackageMetadata]) -> bool:
        info_a, _ = self._resolve(name_a, va, metadata)
        info_b, _ = self._resolve(name_b, vb, metadata)
        if info_a is None or info_b is None:
            return False
        if self._peer_conflict(name_a, va, info_a, name_b, vb, info_b):
            return False
        return self.known_issues.evaluate(name_a, va, name_b, vb) is None

    # =========================================================================
    # 업그레이드 분석
    # =========================================================================

    def upgrade_analysis(
        self,
        dependencies: Mapping[str, str],
        latest_versions: Mapping[str, Any],
        metadata: Mapping[str, PackageMetadata]
    ) -> Dict[str, UpgradeAssessment]:
        """
        최신 버전으로 올렸을 때 다른 선언 의존성과의 peer 충돌 검사

        Known Issues 규칙은 여기서 사용하지 않는다.
        판단할 수 없는 쌍(메타데이터 없음)은 차단 사유로 보지 않는다.
        """
        results: Dict[str, UpgradeAssessment] = {}

        for name, raw in latest_versions.items():
            entry = LatestVersion.coerce(raw)
            try:
                current = clean_version(entry.current)
                latest = clean_version(entry.latest)
            except VersionParseError as e:
                logger.warning("Skipping upgrade analysis for %s: %s", name, e)
                continue

            if not gt(latest, current):
                continue

            issues: List[BlockingIssue] = []
            for other, other_range in dependencies.items():
                if other == name:
                    continue
                reason = self._upgrade_conflict(name, latest, other, other_range, metadata)
                if reason:
                    issues.append(BlockingIssue(with_name=other, reason=reason))

            results[name] = UpgradeAssessment(
                name=name,
                current=current,
                latest=latest,
                can_upgrade=not issues,
                blocking_issues=issues
            )

        return results

    def _upgrade_conflict(self, name: str, latest: str, other: str, other_range: str,
                          metadata: Mapping[str, PackageMetadata]) -> Optional[str]:
        try:
            other_version = clean_version(other_range)
        except VersionParseError:
            return None

        info, _ = self._resolve(name, latest, metadata)
        other_info, _ = self._resolve(other, other_version, metadata)
        if info is None or other_info is None:
            return None

        conflict = self._peer_conflict(name, latest, info, other, other_version, other_info)
        if conflict is None:
            return None

        if conflict.constrained == name:
            return (f"{other} requires {name}@{conflict.requirement}, "
                    f"but the planned upgrade is {latest}")
        return (f"{name}@{latest} requires {other}@{conflict.requirement}, "
                f"but current version is {other_version}")


__all__ = [
    'CompatibilityEngine',
    'GatheredMetadata',
    'PeerConflict',
    'find_nearest_version',
]
