"""
Usage Event Sources

A usage event source supplies UsageEpisode records for a time range. The
production adapter wraps a platform usage-access integration; synthetic
sources for demos and tests live under testing/ and are not shipped here.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List
import logging

from pydantic import ValidationError

from jitai.models import UsageEpisode

logger = logging.getLogger(__name__)


class UsageEventSource(ABC):
    """Capability: supply usage episodes that started within [since, until)."""

    @abstractmethod
    def fetch_episodes(self, since: datetime, until: datetime) -> List[UsageEpisode]:
        raise NotImplementedError


class PlatformUsageSource(UsageEventSource):
    """
    Adapter around a platform usage-access API.

    Args:
        fetch_records: Callable (since, until) -> iterable of raw dict records
            with at least id, start_time, app_category and either duration or
            end_time. Keys follow UsageEpisode field names.
    """

    def __init__(self, fetch_records: Callable[[datetime, datetime], Iterable[Dict[str, Any]]]):
        self._fetch_records = fetch_records

    def fetch_episodes(self, since: datetime, until: datetime) -> List[UsageEpisode]:
        episodes = []
        skipped = 0
        for record in self._fetch_records(since, until):
            try:
                episode = UsageEpisode.model_validate(record)
            except ValidationError as e:
                skipped += 1
                logger.warning(f"Skipping invalid usage record {record.get('id', '<no id>')}: {e.error_count()} errors")
                continue
            try:
                in_range = since <= episode.start_time < until
            except TypeError:
                skipped += 1
                logger.warning(f"Skipping usage record {episode.id}: timezone does not match the requested range")
                continue
            if not in_range:
                logger.debug(f"Skipping usage record {episode.id} outside the requested range")
                continue
            episodes.append(episode)

        episodes.sort(key=lambda ep: ep.start_time)
        logger.info(f"Fetched {len(episodes)} usage episodes ({skipped} invalid records skipped)")
        return episodes
