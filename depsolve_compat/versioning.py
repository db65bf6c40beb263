"""
depsolve_compat/versioning.py
=============================
npm 스타일 시맨틱 버전 처리 (node-semver)

범위 해석과 버전 비교는 node-semver(npm semver의 Python 포트)에 맡기고,
여기에는 엔진이 쓰는 얇은 래퍼만 둔다.

- clean_version: 선언 범위에서 첫 번째 X.Y.Z[-pre] 토큰 추출
- distance: nearest-version 탐색용 수치 거리
- satisfies / max_satisfying: 잘못된 입력은 예외 대신 False / None

Prerelease 규칙은 npm과 동일:
  1.0.0-beta.2 같은 prerelease 버전은 같은 [major, minor, patch]에
  prerelease가 명시된 비교자가 있을 때만 범위를 만족한다.
"""

import re
from functools import cmp_to_key
from typing import Iterable, Optional

import nodesemver

from .errors import VersionParseError

# 선언 범위에서 첫 번째 완전한 버전 토큰
EMBEDDED_VERSION = re.compile(
    r'(\d+)\.(\d+)\.(\d+)(?:-([0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?'
)


# =============================================================================
# 파싱
# =============================================================================

def parse(text: str) -> "nodesemver.SemVer":
    """
    Raises:
        VersionParseError: 유효한 semver가 아닐 때
    """
    try:
        return nodesemver.make_semver(text, loose=False)
    except (TypeError, ValueError) as e:
        raise VersionParseError(str(text)) from e


def try_parse(text: str) -> Optional["nodesemver.SemVer"]:
    try:
        return parse(text)
    except VersionParseError:
        return None


def is_valid(text: str) -> bool:
    return try_parse(text) is not None


def clean_version(raw: str) -> str:
    """
    선언 범위를 정규 버전 문자열로 변환

    "^17.0.0" → "17.0.0", ">=16.8.0" → "16.8.0"

    Raises:
        VersionParseError: 완전한 X.Y.Z 토큰이 없을 때
    """
    if not isinstance(raw, str):
        raise VersionParseError(repr(raw), "version range must be a string")
    match = EMBEDDED_VERSION.search(raw)
    if not match:
        raise VersionParseError(raw, "no MAJOR.MINOR.PATCH version in range")
    cleaned = nodesemver.valid(match.group(0), loose=False)
    if cleaned is None:
        raise VersionParseError(raw)
    return str(cleaned)


# =============================================================================
# 비교
# =============================================================================

def compare(a: str, b: str) -> int:
    """a < b → -1, a == b → 0, a > b → 1"""
    try:
        return nodesemver.compare(a, b, loose=False)
    except (TypeError, ValueError) as e:
        raise VersionParseError(f"{a} / {b}", "cannot compare versions") from e


def gt(a: str, b: str) -> bool:
    return compare(a, b) > 0


def gte(a: str, b: str) -> bool:
    return compare(a, b) >= 0


def lt(a: str, b: str) -> bool:
    return compare(a, b) < 0


# sorted(versions, key=version_key)
version_key = cmp_to_key(compare)


def major(version: str) -> int:
    return parse(version).major


def minor(version: str) -> int:
    return parse(version).minor


_DISTANCE_WEIGHT = 10 ** 12


def distance(a: str, b: str) -> int:
    """
    두 버전 사이 수치 거리

    (major, minor, patch)를 자리 가중치로 하나의 정수로 만든 뒤 절대 차이.
    가중치가 충분히 커서 거리 순서가 버전 순서와 일치한다.
    """
    def encode(text: str) -> int:
        v = parse(text)
        return (v.major * _DISTANCE_WEIGHT + v.minor) * _DISTANCE_WEIGHT + v.patch

    return abs(encode(a) - encode(b))


# =============================================================================
# 범위
# =============================================================================

def satisfies(version: str, expression: str) -> bool:
    """버전이 범위를 만족하는지 (잘못된 입력은 False)"""
    if not is_valid(version):
        return False
    try:
        return bool(nodesemver.satisfies(version, expression, loose=False))
    except (TypeError, ValueError):
        return False


def max_satisfying(versions: Iterable[str], expression: str) -> Optional[str]:
    """범위를 만족하는 가장 높은 버전 (없으면 None)"""
    candidates = [v for v in versions if is_valid(v)]
    if not candidates:
        return None
    try:
        return nodesemver.max_satisfying(candidates, expression, loose=False)
    except (TypeError, ValueError):
        return None


__all__ = [
    'parse',
    'try_parse',
    'is_valid',
    'clean_version',
    'compare',
    'gt',
    'gte',
    'lt',
    'version_key',
    'major',
    'minor',
    'distance',
    'satisfies',
    'max_satisfying',
]
