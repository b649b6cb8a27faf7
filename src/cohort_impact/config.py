"""
Reporting configuration.

Credentials and the analytics view are passed explicitly to the
reporting client instead of being read from the process environment.
"""

import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from .exceptions import InvalidInputError

ANALYTICS_READONLY_SCOPE = 'https://www.googleapis.com/auth/analytics.readonly'


@dataclass
class ReportingConfig:
    """Configuration for the reporting-API client."""
    # Credentials
    service_account_path: str
    view_id: str
    scopes: List[str] = field(default_factory=lambda: [ANALYTICS_READONLY_SCOPE])

    # Request settings
    page_size: int = 10000
    api_name: str = 'analyticsreporting'
    api_version: str = 'v4'

    def __post_init__(self):
        if not self.service_account_path:
            raise InvalidInputError("service_account_path is required")
        if not self.view_id:
            raise InvalidInputError("view_id is required")
        if not 1 <= self.page_size <= 100000:
            raise InvalidInputError(
                f"page_size must be between 1 and 100000, got {self.page_size}"
            )
        self.view_id = str(self.view_id)
        self.scopes = list(self.scopes)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        prefix: str = 'COHORT_IMPACT_'
    ) -> 'ReportingConfig':
        """
        Build a config from environment variables.

        Reads ``<prefix>SERVICE_ACCOUNT_PATH`` (falling back to
        ``GOOGLE_APPLICATION_CREDENTIALS``), ``<prefix>VIEW_ID`` and an
        optional comma-separated ``<prefix>SCOPES``.
        """
        env = os.environ if environ is None else environ

        path = env.get(prefix + 'SERVICE_ACCOUNT_PATH') or env.get('GOOGLE_APPLICATION_CREDENTIALS')
        scopes = env.get(prefix + 'SCOPES')

        kwargs = {
            'service_account_path': path or '',
            'view_id': env.get(prefix + 'VIEW_ID', '')
        }
        if scopes:
            kwargs['scopes'] = [s.strip() for s in scopes.split(',') if s.strip()]

        return cls(**kwargs)
