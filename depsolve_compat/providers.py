"""
depsolve_compat/providers.py
============================
패키지 메타데이터 공급자

엔진은 fetch(name)만 호출한다. 레지스트리 조회 같은 실제 I/O는
외부 구현이 담당하고, 여기에는 스냅샷/테스트용 메모리 구현만 둔다.
"""

import inspect
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Mapping, Union

from .errors import MetadataFetchError
from .models import PackageMetadata


class PackageMetadataProvider(ABC):
    """패키지 단위 메타데이터 공급 인터페이스 (패키지별 실패 가능)"""

    @abstractmethod
    async def fetch(self, name: str) -> PackageMetadata:
        """
        Raises:
            MetadataFetchError: 해당 패키지 조회 실패
        """


class StaticMetadataProvider(PackageMetadataProvider):
    """
    메모리 내 메타데이터 공급자

    payload 형식:
        {"react": {"versions": {"17.0.2": {"peerDependencies": {}}}}}
    """

    def __init__(self, payload: Mapping[str, Any]):
        self._payload = dict(payload)

    async def fetch(self, name: str) -> PackageMetadata:
        data = self._payload.get(name)
        if data is None:
            raise MetadataFetchError(name, "package not found in snapshot")
        if isinstance(data, PackageMetadata):
            return data
        if not isinstance(data, Mapping):
            raise MetadataFetchError(name, f"malformed metadata ({type(data).__name__})")
        return PackageMetadata.from_dict(name, data)


FetchCallable = Callable[[str], Union[Awaitable[Any], Any]]


class CallableMetadataProvider(PackageMetadataProvider):
    """함수(동기/비동기)를 공급자로 감싸는 어댑터"""

    def __init__(self, func: FetchCallable):
        self._func = func

    async def fetch(self, name: str) -> PackageMetadata:
        try:
            result = self._func(name)
            if inspect.isawaitable(result):
                result = await result
        except MetadataFetchError:
            raise
        except Exception as e:
            raise MetadataFetchError(name, str(e)) from e

        if isinstance(result, PackageMetadata):
            return result
        if not isinstance(result, Mapping):
            raise MetadataFetchError(name, f"malformed metadata ({type(result).__name__})")
        return PackageMetadata.from_dict(name, result)


def as_provider(source: Union[PackageMetadataProvider, Mapping[str, Any], FetchCallable]) -> PackageMetadataProvider:
    """매핑/함수/공급자 무엇이든 PackageMetadataProvider로 변환"""
    if isinstance(source, PackageMetadataProvider):
        return source
    if isinstance(source, Mapping):
        return StaticMetadataProvider(source)
    if callable(source):
        return CallableMetadataProvider(source)
    raise TypeError(f"Unsupported metadata source: {type(source).__name__}")


__all__ = [
    'PackageMetadataProvider',
    'StaticMetadataProvider',
    'CallableMetadataProvider',
    'as_provider',
]
