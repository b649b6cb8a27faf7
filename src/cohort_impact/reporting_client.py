"""
Reporting API Client
====================

Thin client for the Google Analytics Reporting API v4.

Key Features:
- Service-account authentication from an explicit ReportingConfig
- Transparent pageToken pagination
- Typed pandas DataFrames (metric types from the column header)
- Cohort extraction (distinct identifiers per filter expression)
- Date-indexed metric series for causal impact analysis

API errors (authentication, quota, HttpError) are not caught here and
reach the caller unchanged.
"""

import logging
import re
from datetime import date, datetime
from typing import Dict, List, Mapping, Optional, Sequence, Union

import pandas as pd

from .config import ReportingConfig
from .exceptions import InvalidInputError
from .overlap import Cohort

logger = logging.getLogger(__name__)

DateLike = Union[str, date, datetime]

_RELATIVE_DATE = re.compile(r'^(today|yesterday|\d+daysAgo)$')
_ABSOLUTE_DATE = re.compile(r'^\d{4}-\d{2}-\d{2}$')

_INTEGER_TYPES = {'INTEGER'}
_FLOAT_TYPES = {'FLOAT', 'CURRENCY', 'PERCENT', 'TIME'}


def format_date(value: DateLike) -> str:
    """Normalize a date to the API's ``YYYY-MM-DD`` / relative form."""
    if isinstance(value, (datetime, date)):
        return value.strftime('%Y-%m-%d')
    if not isinstance(value, str):
        raise InvalidInputError(f"Unsupported date value: {value!r}")

    value = value.strip()
    if _RELATIVE_DATE.match(value):
        return value
    if _ABSOLUTE_DATE.match(value):
        try:
            datetime.strptime(value, '%Y-%m-%d')
        except ValueError as exc:
            raise InvalidInputError(f"Invalid date: {value!r}") from exc
        return value
    raise InvalidInputError(
        f"Invalid date {value!r}: expected YYYY-MM-DD, 'today', 'yesterday' or 'NdaysAgo'"
    )


def _column_name(api_name: str) -> str:
    return api_name.split(':', 1)[1] if ':' in api_name else api_name


class ReportingClient:
    """
    Reporting API client.

    Parameters
    ----------
    config : ReportingConfig
        Credentials, view and paging settings
    service : object, optional
        Pre-built discovery service. When omitted, one is built on first
        use from the service-account file in ``config``.
    """

    def __init__(self, config: ReportingConfig, service=None):
        self.config = config
        self._service = service

    @property
    def service(self):
        if self._service is None:
            self._service = self._build_service()
        return self._service

    def _build_service(self):
        # Imported here so offline use (injected service) does not need credentials
        from google.oauth2 import service_account
        from googleapiclient.discovery import build

        logger.info(
            "Authenticating with service account %s", self.config.service_account_path
        )
        credentials = service_account.Credentials.from_service_account_file(
            self.config.service_account_path,
            scopes=self.config.scopes
        )
        return build(
            self.config.api_name,
            self.config.api_version,
            credentials=credentials,
            cache_discovery=False
        )

    def _request_body(
        self,
        start_date: str,
        end_date: str,
        metrics: Sequence[str],
        dimensions: Sequence[str],
        filters_expression: Optional[str],
        page_token: Optional[str]
    ) -> Dict:
        request = {
            'viewId': self.config.view_id,
            'dateRanges': [{'startDate': start_date, 'endDate': end_date}],
            'metrics': [{'expression': m} for m in metrics],
            'dimensions': [{'name': d} for d in dimensions],
            'pageSize': self.config.page_size
        }
        if filters_expression:
            request['filtersExpression'] = filters_expression
        if page_token:
            request['pageToken'] = page_token
        return {'reportRequests': [request]}

    def fetch_report(
        self,
        start_date: DateLike,
        end_date: DateLike,
        metrics: Sequence[str],
        dimensions: Sequence[str] = (),
        filters_expression: Optional[str] = None
    ) -> pd.DataFrame:
        """
        Fetch every page of a report.

        Parameters
        ----------
        start_date, end_date : str or date
            Inclusive date range
        metrics : list of str
            Metric expressions, e.g. ``['ga:sessions']``
        dimensions : list of str
            Dimension names, e.g. ``['ga:date']``
        filters_expression : str, optional
            Filter expression, e.g. ``'ga:pagePath=~^/blog/'``

        Returns
        -------
        pd.DataFrame
            One column per dimension and metric, with the ``ga:`` prefix
            dropped. ``date`` columns are parsed to timestamps.
        """
        if not metrics:
            raise InvalidInputError("At least one metric is required")

        start = format_date(start_date)
        end = format_date(end_date)
        if _ABSOLUTE_DATE.match(start) and _ABSOLUTE_DATE.match(end) and start > end:
            raise InvalidInputError(f"start_date {start} is after end_date {end}")

        rows = []
        dimension_names = list(dimensions)
        metric_headers = [{'name': m, 'type': 'FLOAT'} for m in metrics]
        page_token = None
        n_pages = 0

        while True:
            body = self._request_body(
                start, end, metrics, dimensions, filters_expression, page_token
            )
            response = self.service.reports().batchGet(body=body).execute()
            report = response['reports'][0]
            n_pages += 1

            header = report.get('columnHeader', {})
            dimension_names = header.get('dimensions', dimension_names)
            metric_headers = header.get('metricHeader', {}).get(
                'metricHeaderEntries', metric_headers
            )

            data = report.get('data', {})
            if data.get('samplesReadCounts'):
                logger.warning(
                    "Report is sampled: %s of %s sessions read",
                    data['samplesReadCounts'],
                    data.get('samplingSpaceSizes')
                )

            for row in data.get('rows', []):
                values = row['metrics'][0]['values'] if row.get('metrics') else []
                rows.append(list(row.get('dimensions', [])) + list(values))

            page_token = report.get('nextPageToken')
            logger.debug("Fetched page %d (%d rows so far)", n_pages, len(rows))
            if not page_token:
                break

        columns = [_column_name(d) for d in dimension_names] + \
                  [_column_name(m['name']) for m in metric_headers]
        frame = pd.DataFrame(rows, columns=columns)

        for entry in metric_headers:
            col = _column_name(entry['name'])
            if entry.get('type') in _INTEGER_TYPES:
                frame[col] = pd.to_numeric(frame[col]).astype('int64')
            elif entry.get('type') in _FLOAT_TYPES:
                frame[col] = pd.to_numeric(frame[col]).astype(float)

        if 'date' in frame.columns:
            frame['date'] = pd.to_datetime(frame['date'], format='%Y%m%d')

        logger.info(
            "Report %s..%s: %d rows in %d page(s)", start, end, len(frame), n_pages
        )
        return frame

    def fetch_cohort(
        self,
        name: str,
        filters_expression: Optional[str],
        start_date: DateLike,
        end_date: DateLike,
        id_dimension: str = 'ga:clientId',
        metric: str = 'ga:sessions'
    ) -> Cohort:
        """Fetch the distinct identifiers matching one cohort filter."""
        frame = self.fetch_report(
            start_date, end_date,
            metrics=[metric],
            dimensions=[id_dimension],
            filters_expression=filters_expression
        )
        members = frame[_column_name(id_dimension)].tolist() if len(frame) else []
        cohort = Cohort(name, members)
        logger.info("Cohort %r: %d members", name, len(cohort))
        return cohort

    def fetch_cohorts(
        self,
        definitions: Mapping[str, Optional[str]],
        start_date: DateLike,
        end_date: DateLike,
        id_dimension: str = 'ga:clientId',
        metric: str = 'ga:sessions'
    ) -> List[Cohort]:
        """Fetch one cohort per ``{name: filters_expression}`` entry."""
        return [
            self.fetch_cohort(name, expression, start_date, end_date, id_dimension, metric)
            for name, expression in definitions.items()
        ]

    def fetch_timeseries(
        self,
        start_date: DateLike,
        end_date: DateLike,
        series: Mapping[str, Optional[str]],
        metric: str = 'ga:sessions'
    ) -> pd.DataFrame:
        """
        Fetch a daily metric for several filters.

        Parameters
        ----------
        series : mapping
            ``{column name: filters_expression}``; ``None`` means unfiltered

        Returns
        -------
        pd.DataFrame
            Date-indexed, one column per entry of ``series`` in order.
            Days without rows are filled with 0.
        """
        if not series:
            raise InvalidInputError("At least one series is required")

        start = format_date(start_date)
        end = format_date(end_date)
        metric_col = _column_name(metric)

        columns = {}
        for name, expression in series.items():
            frame = self.fetch_report(
                start, end,
                metrics=[metric],
                dimensions=['ga:date'],
                filters_expression=expression
            )
            if len(frame):
                columns[name] = frame.set_index('date')[metric_col]
            else:
                columns[name] = pd.Series(dtype=float, index=pd.DatetimeIndex([]))

        result = pd.DataFrame(columns)
        # Relative bounds are resolved server-side; fall back to the observed span
        first = pd.Timestamp(start) if _ABSOLUTE_DATE.match(start) else result.index.min()
        last = pd.Timestamp(end) if _ABSOLUTE_DATE.match(end) else result.index.max()
        if pd.isna(first) or pd.isna(last):
            full_index = result.index
        else:
            full_index = pd.date_range(first, last, freq='D')
        result = result.reindex(full_index).fillna(0)
        result.index.name = 'date'
        return result[list(series)]
