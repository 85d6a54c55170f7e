from __future__ import annotations

from jobsync.core.config import Settings
from jobsync.sources.arbeitnow import ArbeitnowSource
from jobsync.sources.base import SourceAdapter
from jobsync.sources.findwork import FindWorkSource
from jobsync.sources.himalayas import HimalayasSource
from jobsync.sources.jobicy import JobicySource
from jobsync.sources.remoteok import RemoteOKSource
from jobsync.sources.remotive import RemotiveSource
from jobsync.sources.themuse import TheMuseSource
from jobsync.sources.usajobs import USAJobsSource


class UnknownSourceError(KeyError):
    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"unknown source: {self.name}"


class SourceRegistry:
    """Maps source names to adapter instances."""

    def __init__(self, adapters: list[SourceAdapter] | None = None) -> None:
        self._adapters: dict[str, SourceAdapter] = {}
        for adapter in adapters or []:
            self.register(adapter)

    def register(self, adapter: SourceAdapter) -> None:
        if adapter.name in self._adapters:
            raise ValueError(f"source already registered: {adapter.name}")
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> SourceAdapter:
        adapter = self._adapters.get(name)
        if adapter is None:
            raise UnknownSourceError(name)
        return adapter

    def names(self) -> list[str]:
        return [
            adapter.name
            for adapter in sorted(self._adapters.values(), key=lambda adapter: (adapter.priority, adapter.name))
        ]

    def __contains__(self, name: object) -> bool:
        return name in self._adapters

    def __len__(self) -> int:
        return len(self._adapters)


def build_registry(settings: Settings) -> SourceRegistry:
    return SourceRegistry(
        [
            RemotiveSource(),
            RemoteOKSource(),
            HimalayasSource(),
            TheMuseSource(),
            JobicySource(),
            ArbeitnowSource(),
            USAJobsSource(api_key=settings.usajobs_api_key, email=settings.usajobs_email),
            FindWorkSource(api_key=settings.findwork_api_key),
        ]
    )
