"""Environment-driven settings for the School Analytics service."""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

from school_analytics.analytics import DEFAULT_BENCHMARK_PROJECTS, RiskThresholds


@dataclass(frozen=True)
class Settings:
    risk_thresholds: RiskThresholds = field(default_factory=RiskThresholds)
    benchmark_projects: int = DEFAULT_BENCHMARK_PROJECTS
    max_upload_size_mb: int = 10
    allow_origins: List[str] = field(default_factory=lambda: ['*'])
    debug: bool = False
    log_level: str = 'INFO'

    @property
    def max_upload_size(self) -> int:
        return self.max_upload_size_mb * 1024 * 1024


def parse_thresholds(value: str) -> Dict[str, int]:
    """
    Parse 'min_xp:100,max_absences:5' style threshold overrides.

    Only the listed keys are returned; missing ones keep their defaults
    when passed to RiskThresholds.from_partial.
    """
    known = ('min_xp', 'max_absences', 'min_submissions')
    overrides = {}
    for item in value.split(','):
        if not item.strip():
            continue
        try:
            key, raw = item.split(':')
            key = key.strip()
            number = int(raw.strip())
        except ValueError:
            raise ValueError(f"RISK_THRESHOLDS: malformed entry '{item.strip()}'")
        if key not in known:
            raise ValueError(f"RISK_THRESHOLDS: unknown key '{key}' (expected one of {', '.join(known)})")
        overrides[key] = number
    return overrides


def _int_env(name: str, default: int, environ) -> int:
    raw = environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'")


def load_settings(environ: Optional[Dict[str, str]] = None) -> Settings:
    """Read settings from the environment, loading a .env file first."""
    if environ is None:
        load_dotenv()
        environ = os.environ

    benchmark = _int_env('BENCHMARK_PROJECTS', DEFAULT_BENCHMARK_PROJECTS, environ)
    if benchmark < 0:
        raise ValueError(f"BENCHMARK_PROJECTS must not be negative, got {benchmark}")

    return Settings(
        risk_thresholds=RiskThresholds.from_partial(parse_thresholds(environ.get('RISK_THRESHOLDS', ''))),
        benchmark_projects=benchmark,
        max_upload_size_mb=_int_env('MAX_UPLOAD_SIZE_MB', 10, environ),
        allow_origins=[o.strip() for o in environ.get('ALLOW_ORIGINS', '*').split(',') if o.strip()],
        debug=environ.get('DEBUG', 'False').lower() == 'true',
        log_level=environ.get('LOG_LEVEL', 'INFO').upper(),
    )
