"""
depsolve_compat/known_issues.py
===============================
Known Issues Layer: peer 범위로 표현할 수 없는 생태계별 비호환 규칙

설계 원칙:
1. 규칙은 두 버전 문자열만 받는 순수 함수 (I/O, 공유 상태 없음)
2. 패키지 쌍은 순서 무관 비교
3. 등록 순서대로 평가, predicate가 True인 첫 규칙이 판정 (first-match)
4. 플러그인은 register()로 규칙을 추가, 언로드 시 remove_owner()로 제거

규칙 파일 (.depsolve/known_issues.yaml):
    rules:
      - kind: matching_minor
        packages: [react, react-dom]
        message: React and React DOM versions must match
      - kind: minimum_version
        packages: [eslint, eslint-plugin-react]
        minimum: ["8.0.0", "7.28.0"]
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from .errors import ConfigParseError
from .models import KnownIssueRule
from . import versioning

logger = logging.getLogger(__name__)


@dataclass
class KnownIssueMatch:
    """첫 번째로 매칭된 규칙의 판정"""
    rule: KnownIssueRule
    reason: str
    recommendation: Optional[Dict[str, str]] = None


# =============================================================================
# 규칙 팩토리
# =============================================================================

def matching_minor_rule(name_a: str, name_b: str, message: Optional[str] = None,
                        owner: Optional[str] = None) -> KnownIssueRule:
    """major+minor가 정확히 같아야 하는 패키지 쌍 (높은 버전으로 통일 추천)"""

    def predicate(va: str, vb: str) -> bool:
        a, b = versioning.parse(va), versioning.parse(vb)
        return (a.major, a.minor) != (b.major, b.minor)

    def recommend(va: str, vb: str) -> Dict[str, str]:
        newer = va if versioning.gt(va, vb) else vb
        return {name_a: newer, name_b: newer}

    return KnownIssueRule(
        packages=(name_a, name_b),
        predicate=predicate,
        message=message or f"{name_a} and {name_b} must share the same major.minor version",
        recommend=recommend,
        owner=owner
    )


def matching_major_rule(name_a: str, name_b: str, message: Optional[str] = None,
                        owner: Optional[str] = None) -> KnownIssueRule:
    """major가 같아야 하는 패키지 쌍 (높은 버전으로 통일 추천)"""

    def predicate(va: str, vb: str) -> bool:
        return versioning.major(va) != versioning.major(vb)

    def recommend(va: str, vb: str) -> Dict[str, str]:
        newer = va if versioning.gt(va, vb) else vb
        return {name_a: newer, name_b: newer}

    return KnownIssueRule(
        packages=(name_a, name_b),
        predicate=predicate,
        message=message or f"{name_a} and {name_b} must share the same major version",
        recommend=recommend,
        owner=owner
    )


def minimum_version_rule(name_a: str, min_a: str, name_b: str, min_b: str,
                         message: Optional[str] = None,
                         owner: Optional[str] = None) -> KnownIssueRule:
    """name_a >= min_a 이면 name_b >= min_b 필요 (min_b 추천)"""

    def predicate(va: str, vb: str) -> bool:
        return versioning.gte(va, min_a) and not versioning.gte(vb, min_b)

    def recommend(va: str, vb: str) -> Dict[str, str]:
        return {name_a: va, name_b: min_b}

    return KnownIssueRule(
        packages=(name_a, name_b),
        predicate=predicate,
        message=message or f"{name_a} {min_a}+ requires {name_b} {min_b} or later",
        recommend=recommend,
        owner=owner
    )


# =============================================================================
# Built-in Rules
# =============================================================================

DEFAULT_RULES: List[KnownIssueRule] = [
    matching_minor_rule(
        "react", "react-dom",
        message="React and React DOM versions must match exactly (major.minor)"
    ),
    minimum_version_rule(
        "eslint", "8.0.0", "eslint-plugin-react", "7.28.0",
        message="ESLint 8.x requires eslint-plugin-react 7.28.0 or later"
    ),
]


# =============================================================================
# Registry
# =============================================================================

class KnownIssuesRegistry:
    """
    알려진 비호환 규칙 테이블

    동시 평가에서 재사용해도 안전 (규칙은 순수 함수, 등록은 append만).
    """

    def __init__(self, rules: Optional[List[KnownIssueRule]] = None):
        self._rules: List[KnownIssueRule] = list(rules or [])

    @classmethod
    def with_defaults(cls) -> "KnownIssuesRegistry":
        return cls(DEFAULT_RULES)

    @property
    def rules(self) -> List[KnownIssueRule]:
        return list(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def register(self, rule: KnownIssueRule) -> KnownIssueRule:
        """규칙 추가 (기존 규칙 순서 유지)"""
        self._rules.append(rule)
        return rule

    def remove_owner(self, owner: str) -> int:
        """특정 플러그인이 추가한 규칙 제거"""
        before = len(self._rules)
        self._rules = [r for r in self._rules if r.owner != owner]
        return before - len(self._rules)

    def lookup(self, name_a: str, name_b: str) -> List[KnownIssueRule]:
        """쌍에 해당하는 규칙 (등록 순서)"""
        return [r for r in self._rules if r.matches(name_a, name_b)]

    def evaluate(self, name_a: str, version_a: str,
                 name_b: str, version_b: str) -> Optional[KnownIssueMatch]:
        """
        first-match 평가

        Returns:
            predicate가 True인 첫 규칙의 판정, 없으면 None
        """
        for rule in self.lookup(name_a, name_b):
            first, second = rule.packages
            v_first, v_second = (
                (version_a, version_b) if name_a == first else (version_b, version_a)
            )

            try:
                hit = rule.predicate(v_first, v_second)
            except Exception as e:
                logger.warning("Known issue rule %s/%s failed: %s", first, second, e)
                continue

            if not hit:
                continue

            return KnownIssueMatch(
                rule=rule,
                reason=rule.message,
                recommendation=self._recommend(rule, v_first, v_second)
            )

        return None

    @staticmethod
    def _recommend(rule: KnownIssueRule, v_first: str, v_second: str) -> Optional[Dict[str, str]]:
        """규칙 추천 계산 (추천값이 같은 규칙을 다시 위반하면 버림)"""
        if rule.recommend is None:
            return None

        first, second = rule.packages
        try:
            raw = rule.recommend(v_first, v_second) or {}
            rec_first = str(raw.get(first, v_first))
            rec_second = str(raw.get(second, v_second))
            if rule.predicate(rec_first, rec_second):
                logger.debug("Dropping recommendation for %s/%s: still violates rule",
                             first, second)
                return None
        except Exception as e:
            logger.warning("Recommendation for %s/%s failed: %s", first, second, e)
            return None

        return {first: rec_first, second: rec_second}

    # -------------------------------------------------------------------------
    # 규칙 파일
    # -------------------------------------------------------------------------

    def load_file(self, path: Path, owner: Optional[str] = None) -> int:
        """
        YAML 규칙 파일 로드

        파일이 없으면 0, 파싱 실패 시 경고 후 0 (기존 규칙 유지)
        """
        path = Path(path)
        if not path.exists():
            return 0

        try:
            rules = parse_rule_file(path, owner=owner)
        except ConfigParseError as e:
            logger.warning("%s; no rules loaded", e)
            return 0

        for rule in rules:
            self.register(rule)
        return len(rules)


def parse_rule_file(path: Path, owner: Optional[str] = None) -> List[KnownIssueRule]:
    """
    Raises:
        ConfigParseError: YAML 오류 또는 잘못된 규칙 정의
    """
    try:
        with open(path, encoding='utf-8') as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigParseError(str(path), str(e)) from e

    if not isinstance(data, Mapping):
        raise ConfigParseError(str(path), "top level must be a mapping")

    rules: List[KnownIssueRule] = []
    for index, entry in enumerate(data.get("rules") or []):
        try:
            rules.append(_rule_from_entry(entry, owner))
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigParseError(str(path), f"rule #{index}: {e}") from e
    return rules


def _rule_from_entry(entry: Mapping[str, Any], owner: Optional[str]) -> KnownIssueRule:
    kind = entry["kind"]
    packages = list(entry["packages"])
    if len(packages) != 2:
        raise ValueError("packages must name exactly two packages")
    name_a, name_b = str(packages[0]), str(packages[1])
    message = entry.get("message")

    if kind == "matching_minor":
        return matching_minor_rule(name_a, name_b, message, owner=owner)
    if kind == "matching_major":
        return matching_major_rule(name_a, name_b, message, owner=owner)
    if kind == "minimum_version":
        min_a, min_b = (str(v) for v in entry["minimum"])
        for value in (min_a, min_b):
            versioning.parse(value)
        return minimum_version_rule(name_a, min_a, name_b, min_b, message, owner=owner)

    raise ValueError(f"unknown rule kind '{kind}'")


__all__ = [
    'KnownIssueMatch',
    'KnownIssuesRegistry',
    'matching_minor_rule',
    'matching_major_rule',
    'minimum_version_rule',
    'parse_rule_file',
    'DEFAULT_RULES',
]
