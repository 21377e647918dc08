"""
Immutable per-profile configuration.

A ProfileConfig is built once from a stored BackupProfile at the start of a
cycle and handed to every component that needs settings.
"""

import json
import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional, Tuple

from .backends import BACKENDS
from .errors import ConfigurationError
from .retention import RetentionPolicy
from .timestamps import TIMESTAMP_FORMATS, get_timestamp_class


def source_target_name(source_path: str) -> str:
    """Name of the working-mirror subdirectory receiving a source."""
    name = os.path.basename(source_path.rstrip('/'))
    return name or 'root'


@dataclass(frozen=True)
class ProfileConfig:
    name: str
    remote: str
    sources: Tuple[str, ...]
    repository_path: Path
    backend: str
    timestamp_format: str
    credential: Path
    max_long_count: int
    max_age_days: int
    exclude_patterns: Tuple[str, ...] = ()
    preserve_permissions: bool = True
    timeout_seconds: Optional[int] = None

    @property
    def retention_policy(self) -> RetentionPolicy:
        return RetentionPolicy(
            max_long_count=self.max_long_count,
            max_age=timedelta(days=self.max_age_days)
        )

    @property
    def timestamp_cls(self):
        return get_timestamp_class(self.timestamp_format)

    @classmethod
    def from_profile(cls, profile) -> 'ProfileConfig':
        """
        Validate a BackupProfile and freeze its settings.

        Args:
            profile: BackupProfile instance

        Raises:
            ConfigurationError: If any field is missing or invalid
        """
        label = profile.name or '<unnamed>'

        def fail(message):
            raise ConfigurationError(f"Profile {label}: {message}")

        if not profile.name:
            fail("name is required")
        if not profile.remote:
            fail("remote endpoint is required")

        try:
            source_config = json.loads(profile.source_config or '{}')
        except ValueError as e:
            fail(f"source configuration is not valid JSON: {e}")
        if not isinstance(source_config, dict):
            fail("source configuration must be an object")

        sources = source_config.get('paths') or []
        if not isinstance(sources, list) or not sources:
            fail("at least one source path is required")
        if not all(isinstance(path, str) and path.strip() for path in sources):
            fail("source paths must be non-empty strings")

        targets = [source_target_name(path) for path in sources]
        if len(set(targets)) != len(targets):
            fail(f"source paths must have distinct base names: {sources}")

        exclude_patterns = source_config.get('exclude_patterns') or []
        if not isinstance(exclude_patterns, list) or \
                not all(isinstance(pattern, str) for pattern in exclude_patterns):
            fail("exclude_patterns must be a list of strings")

        if not profile.repository_path or not os.path.isabs(profile.repository_path):
            fail(f"repository path must be absolute: {profile.repository_path!r}")

        if profile.backend not in BACKENDS:
            fail(f"invalid backend {profile.backend!r}, valid options: {sorted(BACKENDS)}")

        if profile.timestamp_format not in TIMESTAMP_FORMATS:
            fail(
                f"invalid timestamp format {profile.timestamp_format!r}, "
                f"valid options: {sorted(TIMESTAMP_FORMATS)}"
            )

        if not profile.credential:
            fail("credential file is required")
        if not os.path.isfile(profile.credential):
            fail(f"credential file not found: {profile.credential}")

        if profile.max_long_count is None or profile.max_long_count < 0:
            fail("max_long_count must be zero or positive")
        if profile.max_age_days is None or profile.max_age_days < 0:
            fail("max_age_days must be zero or positive")

        if profile.timeout_seconds is not None and profile.timeout_seconds <= 0:
            fail("timeout_seconds must be positive")

        return cls(
            name=profile.name,
            remote=profile.remote,
            sources=tuple(sources),
            repository_path=Path(profile.repository_path),
            backend=profile.backend,
            timestamp_format=profile.timestamp_format,
            credential=Path(profile.credential),
            max_long_count=profile.max_long_count,
            max_age_days=profile.max_age_days,
            exclude_patterns=tuple(exclude_patterns),
            preserve_permissions=bool(profile.preserve_permissions),
            timeout_seconds=profile.timeout_seconds
        )
