"""
Source feed refresh for the alumni and company collections.
Fetches JSON feeds with retry logic and rate limiting, then matches alumni to companies.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
from asyncio_throttle import Throttler
import structlog

from .database import MongoDBManager
from .models import AlumniRecord, CompanyRecord, MatchedAlumnus, RefreshResult
from utilities.config import AppConfig, config as default_config

logger = structlog.get_logger(__name__)


class SourceUnavailableError(Exception):
    """The external source could not be reached or returned an unusable payload."""


class SourceClient:
    """
    HTTP client for the scraped company and alumni feeds.
    """

    def __init__(self, app_config: AppConfig = default_config):
        self.config = app_config
        self.throttler = Throttler(rate_limit=app_config.rate_limit_per_second)
        self.client_config = {
            "timeout": app_config.request_timeout,
            "headers": app_config.get_headers(),
            "follow_redirects": True,
        }
        self.logger = logger.bind(component="source_client")

    async def fetch_companies(self) -> Optional[List[Any]]:
        """Fetch the company feed, or None when no feed is configured."""
        return await self._fetch_feed(self.config.company_feed_url)

    async def fetch_alumni(self) -> Optional[List[Any]]:
        """Fetch the alumni feed, or None when no feed is configured."""
        return await self._fetch_feed(self.config.alumni_feed_url)

    async def _fetch_feed(self, url: Optional[str]) -> Optional[List[Any]]:
        if not url:
            return None

        async with httpx.AsyncClient(**self.client_config) as client:
            async with self.throttler:
                response = await self._make_request_with_retry(client, url)

        try:
            payload = response.json()
        except ValueError as e:
            raise SourceUnavailableError(f"Feed {url} did not return JSON: {e}") from e

        if not isinstance(payload, list):
            raise SourceUnavailableError(f"Feed {url} did not return a JSON array")

        self.logger.debug("Fetched feed", url=url, items=len(payload))
        return payload

    async def _make_request_with_retry(self, client: httpx.AsyncClient, url: str) -> httpx.Response:
        """
        Make HTTP request with retry logic and exponential backoff.

        Raises:
            SourceUnavailableError: when every attempt failed
        """
        last_exception = None

        for attempt in range(self.config.retry_attempts + 1):
            try:
                response = await client.get(url)
                response.raise_for_status()
                return response

            except httpx.HTTPError as e:
                last_exception = e

                if attempt < self.config.retry_attempts:
                    delay = self.config.retry_delay * (2 ** attempt)
                    self.logger.warning(
                        "Retrying request",
                        url=url,
                        attempt=attempt + 1,
                        max_attempts=self.config.retry_attempts,
                        delay_seconds=delay
                    )
                    await asyncio.sleep(delay)

        self.logger.error(
            "Request failed after retries",
            url=url,
            retries=self.config.retry_attempts,
            error=str(last_exception)
        )
        raise SourceUnavailableError(f"Feed {url} unavailable: {last_exception}") from last_exception


def match_alumni_to_companies(
    alumni: List[AlumniRecord],
    companies: List[CompanyRecord]
) -> Dict[str, List[MatchedAlumnus]]:
    """
    Group alumni under the company whose name equals their employer.

    Existing matches on a company are kept; an alumnus already listed under
    the same url is not added twice.
    """
    company_names = {company.name for company in companies}
    matches: Dict[str, List[MatchedAlumnus]] = defaultdict(list)

    for company in companies:
        matches[company.name].extend(company.alumnis)

    for record in alumni:
        if record.company not in company_names:
            continue

        listed = matches[record.company]
        if record.url and any(m.url == record.url for m in listed):
            continue
        listed.append(MatchedAlumnus(name=record.name, position=record.job, url=record.url))

    return {name: listed for name, listed in matches.items() if listed}


class SourceRefresher:
    """
    Refreshes the current alumni snapshot and the company directory.
    """

    def __init__(self, db_manager: MongoDBManager, client: Optional[SourceClient] = None):
        self.db_manager = db_manager
        self.client = client or SourceClient()
        self.logger = logger.bind(component="source_refresher")

    async def refresh(self) -> RefreshResult:
        """
        Pull both feeds and rewrite the current collections.

        Both feeds are fetched before anything is written, so an unavailable
        source leaves the stored data untouched.

        Raises:
            SourceUnavailableError: a configured feed could not be fetched
        """
        start_time = datetime.utcnow()
        self.logger.info("Starting source refresh")

        alumni_items = await self.client.fetch_alumni()
        company_items = await self.client.fetch_companies()

        result = RefreshResult()

        if alumni_items is None:
            self.logger.info("No alumni feed configured, keeping current snapshot")
        else:
            records = [AlumniRecord.from_source(item) for item in alumni_items]
            result.malformed_alumni = sum(1 for r in records if r.error_parsing)
            result.alumni_fetched = await self.db_manager.replace_current_alumni(records)

        if company_items is None:
            self.logger.info("No company feed configured, keeping company directory")
        else:
            companies = self._parse_companies(company_items)
            result.companies_fetched = await self.db_manager.replace_unfavorited_companies(companies)

        result.companies_matched = await self.match_alumni()

        result.duration_seconds = (datetime.utcnow() - start_time).total_seconds()
        self.logger.info("Source refresh completed", **result.model_dump(exclude={"finished_at"}))
        return result

    async def match_alumni(self) -> int:
        """
        Attach current alumni to the companies they work for.

        Returns:
            Number of companies with at least one matched alumnus
        """
        alumni = await self.db_manager.get_current_alumni()
        companies = await self.db_manager.get_companies()

        matches = match_alumni_to_companies(alumni, companies)
        for name, listed in matches.items():
            await self.db_manager.set_company_alumni(name, listed)

        self.logger.debug("Matched alumni to companies", companies=len(matches))
        return len(matches)

    def _parse_companies(self, items: List[Any]) -> List[CompanyRecord]:
        companies = []
        for item in items:
            try:
                companies.append(CompanyRecord.model_validate(item))
            except ValueError as e:
                self.logger.warning("Skipping malformed company", item=str(item)[:200], error=str(e))
        return companies
