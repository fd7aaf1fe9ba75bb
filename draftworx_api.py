#
# draftworx_api.py
#
# Draftworx Cloud API client: configuration, the authenticated request
# gateway, read-side queries and the client creation request builder.
#
import calendar
import functools
import json
import os
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, ValidationError

from draftworx_models import (
    COUNTRIES,
    DEFAULT_COUNTRY_CODE,
    ApiError,
    Client,
    ClientSummary,
    Country,
    DraftworxError,
    Framework,
    FrameworkNotFound,
    NewFinancialYear,
    NoFinancialYear,
    NotFound,
    Practice,
    Result,
    TrialBalance,
    TrialBalanceEntry,
)
from utils import logger, safe_dumps

DEFAULT_API_HOST = "api.development.cloud.draftworx.com"
DEFAULT_FRAMEWORK_PATTERN = "ifrs sme"
WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


# ---- Configuration ----
class DraftworxConfig(BaseModel):
    """Process-wide settings, read once at startup and never mutated."""

    model_config = ConfigDict(frozen=True)

    host: str = DEFAULT_API_HOST
    bearer_token: str = ""
    practice_id: str = ""
    timeout: float = 30.0

    @classmethod
    def from_env(cls) -> "DraftworxConfig":
        return cls(
            host=os.environ.get("DRAFTWORX_API_HOST") or DEFAULT_API_HOST,
            bearer_token=os.environ.get("DRAFTWORX_BEARER_TOKEN", ""),
            practice_id=os.environ.get("DRAFTWORX_PRACTICE_ID", ""),
            timeout=float(os.environ.get("DRAFTWORX_TIMEOUT", "30")),
        )

    def is_configured(self) -> bool:
        return bool(self.bearer_token and self.practice_id)

    def status(self) -> Dict[str, Any]:
        return {
            "configured": self.is_configured(),
            "host": self.host,
            "hasBearerToken": bool(self.bearer_token),
            "hasPracticeId": bool(self.practice_id),
        }


# ---- Gateway ----
class DraftworxClient:
    """Authenticated JSON requests against the Draftworx REST host.

    Every call opens and completes its own HTTP exchange; nothing is cached
    between calls.
    """

    def __init__(self, config: DraftworxConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.base_url = f"https://{config.host}"
        self._transport = transport

    def _get_headers(self, method: str) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.bearer_token}",
            "PracticeId": self.config.practice_id,
            "Content-Type": "application/json;charset=UTF-8",
            "Accept": "application/json, text/plain, */*",
        }
        if method.upper() in WRITE_METHODS:
            # Draftworx otherwise autosaves the whole client graph on writes
            headers["autosave"] = "false"
        return headers

    async def request(self, method: str, path: str, body: Any = None) -> Any:
        method = method.upper()
        url = f"{self.base_url}{path}"
        content = safe_dumps(body).encode("utf-8") if body is not None else None

        logger.debug("Draftworx %s %s", method, path)
        async with httpx.AsyncClient(timeout=self.config.timeout, transport=self._transport) as client:
            response = await client.request(method, url, headers=self._get_headers(method), content=content)

        if not response.is_success:
            logger.error("Draftworx API error %s on %s %s: %s", response.status_code, method, path, response.text)
            raise ApiError(response.status_code, response.text)

        return response.json()


def returns_result(func):
    """Wrap an API coroutine so it returns a Result instead of raising.

    Draftworx errors, transport failures and malformed response bodies become
    failure results; anything else is a bug and propagates.
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> Result:
        try:
            return Result.success(await func(*args, **kwargs))
        except (DraftworxError, httpx.HTTPError, json.JSONDecodeError, ValidationError) as e:
            logger.warning("%s failed: %s", func.__name__, e)
            return Result.failure(e)

    return wrapper


# ---- Queries ----
@returns_result
async def get_practices(api: DraftworxClient) -> List[Practice]:
    data = await api.request("GET", "/Practices")
    return [Practice.model_validate(p) for p in data]


@returns_result
async def get_clients(api: DraftworxClient) -> List[Client]:
    data = await api.request("GET", "/Clients")
    return [Client.model_validate(c) for c in data]


@returns_result
async def get_active_clients(api: DraftworxClient) -> List[Client]:
    """Clients that are neither deleted nor archived, in API order."""
    clients = (await get_clients(api)).unwrap()
    return [c for c in clients if c.is_active]


@returns_result
async def search_clients(api: DraftworxClient, query: str) -> List[Client]:
    clients = (await get_active_clients(api)).unwrap()
    needle = query.lower()
    return [c for c in clients if needle in c.name.lower() or needle in c.engagement_name.lower()]


@returns_result
async def get_client(api: DraftworxClient, client_id: str) -> Optional[Client]:
    """Look up one client by id; a successful result holds None when absent."""
    clients = (await get_clients(api)).unwrap()
    return next((c for c in clients if c.id == client_id), None)


@returns_result
async def get_frameworks(api: DraftworxClient, active_only: bool = True) -> List[Framework]:
    query = "?$filter=active%20eq%20true" if active_only else ""
    data = await api.request("GET", f"/frameworks{query}")
    return [Framework.model_validate(f) for f in data]


@returns_result
async def get_frameworks_for_country(api: DraftworxClient, country_id: str) -> List[Framework]:
    frameworks = (await get_frameworks(api)).unwrap()
    return [f for f in frameworks if f.country_id == country_id]


@returns_result
async def get_trial_balance(
    api: DraftworxClient,
    client_id: str,
    financial_year_id: Optional[str] = None,
) -> TrialBalance:
    client = (await get_client(api, client_id)).unwrap()
    if client is None:
        raise NotFound("Client", client_id)

    fy_id = financial_year_id
    if not fy_id:
        fy = client.current_financial_year()
        if fy is None:
            raise NoFinancialYear(client_id)
        fy_id = fy.id

    data = await api.request("GET", f"/TrialBalances/{fy_id}")
    return TrialBalance(
        client_id=client_id,
        financial_year_id=fy_id,
        entries=[TrialBalanceEntry.model_validate(e) for e in data],
    )


@returns_result
async def get_client_summary(api: DraftworxClient) -> ClientSummary:
    """Counts across every client; "active" here means not deleted."""
    clients = (await get_clients(api)).unwrap()
    active = deleted = 0
    by_year: Dict[Optional[int], int] = {}
    for c in clients:
        if c.deleted:
            deleted += 1
            continue
        active += 1
        by_year[c.tax_year] = by_year.get(c.tax_year, 0) + 1
    return ClientSummary(total=len(clients), active=active, deleted=deleted, by_year=by_year)


# ---- Client creation ----
def resolve_country(country_code: Optional[str]) -> Country:
    """Country for a code; unsupported codes fall back to the default country."""
    country = COUNTRIES.get(country_code or "")
    if country is None:
        logger.info("Unsupported country code %r, using %s", country_code, DEFAULT_COUNTRY_CODE)
        return COUNTRIES[DEFAULT_COUNTRY_CODE]
    return country


def build_financial_year(tax_year: int, country: Country) -> NewFinancialYear:
    """Financial year ending in ``tax_year`` for the country's fiscal calendar.

    The year starts on the first of the country's start month in
    ``tax_year - 1`` and ends on the last day of the preceding month in
    ``tax_year`` (December when the year starts in January).
    """
    start_month = country.default_financial_year_starting_month or 3
    start_year = tax_year - 1
    end_year = tax_year
    end_month = start_month - 1 or 12
    end_day = calendar.monthrange(end_year, end_month)[1]

    return NewFinancialYear(
        start=f"{start_year}-{start_month:02d}-01T00:00:00.00",
        end=f"{end_year}-{end_month:02d}-{end_day:02d}T00:00:00.00",
        display_end=f"{end_day:02d}/{end_month:02d}/{end_year}",
        current=True,
        tax_rate=country.default_tax_rate,
    )


def select_framework(frameworks: List[Framework], pattern: str, country_code: str) -> Framework:
    """First framework matching ``pattern``, else the first one available."""
    for framework in frameworks:
        if framework.matches(pattern):
            return framework
    if frameworks:
        logger.info("No framework matches %r for %s, using %s", pattern, country_code, frameworks[0].name)
        return frameworks[0]
    raise FrameworkNotFound(country_code)


def build_client_payload(
    name: str,
    tax_year: int,
    country: Country,
    framework: Framework,
    engagement_name: Optional[str] = None,
) -> List[Dict[str, Any]]:
    # The Clients endpoint only accepts an array body, even for one record
    return [
        {
            "name": name,
            "engagementName": engagement_name or name,
            "taxYear": tax_year,
            "countryId": country.id,
            "frameworkId": framework.id,
            "country": country.to_payload(),
            "financialYears": [build_financial_year(tax_year, country).to_payload()],
        }
    ]


@returns_result
async def create_client(
    api: DraftworxClient,
    name: str,
    tax_year: int,
    country_code: str = DEFAULT_COUNTRY_CODE,
    framework_pattern: str = DEFAULT_FRAMEWORK_PATTERN,
) -> Client:
    country = resolve_country(country_code)
    frameworks = (await get_frameworks_for_country(api, country.id)).unwrap()
    framework = select_framework(frameworks, framework_pattern, country_code)

    payload = build_client_payload(name, tax_year, country, framework)
    created = await api.request("POST", "/Clients", payload)
    if not created:
        raise DraftworxError(f"Client creation returned no records for {name}")
    logger.info("Created Draftworx client %r for tax year %s", name, tax_year)
    return Client.model_validate(created[0])
