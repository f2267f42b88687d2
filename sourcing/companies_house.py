"""
Companies House API integration for startup discovery.

- Advanced search: companies incorporated in a date window under a SIC code
- Officers: current directors / secretaries of a company

Free API: https://developer.company-information.service.gov.uk/
Rate limit: 600 requests per 5 minutes, enforced client-side by
ratelimit.limiter("companies_house").

Transport errors, timeouts and non-2xx responses raise RegistryError; a 404
means "no data" and returns None.
"""

import logging
import time
from datetime import date, timedelta
from typing import Optional

import requests

from sourcing import config, ratelimit

logger = logging.getLogger(__name__)

SEARCH_PAGE_SIZE = 100
_RATE_LIMIT_BACKOFF_SECONDS = 60
_MAX_RATE_LIMIT_RETRIES = 2

# Only these survive discovery
ACTIVE_STATUS = "active"
PRIVATE_LIMITED_TYPE = "ltd"


class RegistryError(Exception):
    """Companies House could not be reached or answered with an error."""


def _api_get(endpoint: str, params: Optional[dict] = None, _retries: int = 0) -> Optional[dict]:
    """Make an authenticated GET request to the Companies House API."""
    if not config.COMPANIES_HOUSE_API_KEY:
        raise RegistryError("No Companies House API key configured")

    url = f"{config.COMPANIES_HOUSE_BASE_URL}{endpoint}"
    ratelimit.limiter("companies_house").acquire()
    try:
        resp = requests.get(
            url,
            params=params,
            auth=(config.COMPANIES_HOUSE_API_KEY, ""),
            timeout=config.REQUEST_TIMEOUT,
        )
    except requests.RequestException as exc:
        raise RegistryError(f"Companies House request failed for {endpoint}: {exc}") from exc

    if resp.status_code == 404:
        logger.debug("Companies House 404 for %s", endpoint)
        return None
    if resp.status_code == 429 and _retries < _MAX_RATE_LIMIT_RETRIES:
        logger.warning("Companies House rate limit hit – backing off %ds", _RATE_LIMIT_BACKOFF_SECONDS)
        time.sleep(_RATE_LIMIT_BACKOFF_SECONDS)
        return _api_get(endpoint, params, _retries=_retries + 1)
    if not 200 <= resp.status_code < 300:
        raise RegistryError(f"Companies House returned {resp.status_code} for {endpoint}")

    try:
        return resp.json()
    except ValueError as exc:
        raise RegistryError(f"Companies House sent invalid JSON for {endpoint}") from exc


def _format_address(addr: dict) -> str:
    parts = [
        addr.get("premises", ""),
        addr.get("address_line_1", ""),
        addr.get("address_line_2", ""),
        addr.get("locality", ""),
        addr.get("region", ""),
        addr.get("postal_code", ""),
        addr.get("country", ""),
    ]
    return ", ".join(p for p in parts if p)


def _normalise_number(company_number: str) -> str:
    num = company_number.strip().upper()
    if num.isdigit():
        num = num.zfill(8)
    return num


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------

def search_recent_companies(from_date: str, to_date: str, sic_code: str) -> list[dict]:
    """Companies incorporated between two ISO dates under one SIC code."""
    data = _api_get(
        "/advanced-search/companies",
        params={
            "incorporated_from": from_date,
            "incorporated_to": to_date,
            "sic_codes": sic_code,
            "size": SEARCH_PAGE_SIZE,
        },
    )
    if not data:
        return []

    companies = []
    for item in data.get("items", []):
        number = item.get("company_number")
        if not number:
            continue
        companies.append({
            "company_number": number,
            "company_name": item.get("company_name", ""),
            "company_status": item.get("company_status", ""),
            "company_type": item.get("company_type", ""),
            "incorporation_date": item.get("date_of_creation", ""),
            "registered_address": _format_address(item.get("registered_office_address") or {}),
            "sic_codes": item.get("sic_codes", []),
        })
    return companies


def discover_recent_companies(
    sic_codes: list[str],
    days_back: Optional[int] = None,
    today: Optional[date] = None,
) -> list[dict]:
    """
    Search every SIC code and return active private-limited companies,
    deduplicated by company number, in first-seen order.

    A failure on one SIC code is logged and the rest are still searched.
    """
    if not config.COMPANIES_HOUSE_API_KEY:
        raise RegistryError("No Companies House API key configured")

    days_back = config.DISCOVERY_DAYS_BACK if days_back is None else days_back
    today = today or date.today()
    from_date = (today - timedelta(days=days_back)).isoformat()
    to_date = today.isoformat()

    seen: dict[str, dict] = {}
    for sic_code in sic_codes:
        try:
            results = search_recent_companies(from_date, to_date, sic_code)
        except RegistryError as exc:
            logger.error("Discovery search failed for SIC %s: %s", sic_code, exc)
            continue
        for company in results:
            if company["company_number"] in seen:
                continue
            if company["company_status"] != ACTIVE_STATUS:
                continue
            if company["company_type"] != PRIVATE_LIMITED_TYPE:
                continue
            seen[company["company_number"]] = company

    logger.info("Companies House: %d candidate companies across %d SIC codes",
                len(seen), len(sic_codes))
    return list(seen.values())


# ---------------------------------------------------------------------------
# Officers
# ---------------------------------------------------------------------------

def get_officers(company_number: str) -> list[dict]:
    """Get the list of current officers (directors, secretaries) for a company."""
    if not company_number:
        return []

    data = _api_get(f"/company/{_normalise_number(company_number)}/officers")
    if not data:
        return []

    officers = []
    for item in data.get("items", []):
        if item.get("resigned_on"):
            continue
        officers.append({
            "name": item.get("name", ""),
            "role": item.get("officer_role", ""),
            "appointed_on": item.get("appointed_on", ""),
            "nationality": item.get("nationality", ""),
            "occupation": item.get("occupation", ""),
        })

    return officers


def split_officer_name(name: str) -> tuple[str, str]:
    """
    Companies House lists officers as "SURNAME, Forenames".

    >>> split_officer_name("SMITH, John Paul")
    ('John Paul', 'SMITH')
    >>> split_officer_name("Acme Nominees")
    ('Acme Nominees', '')
    """
    name = (name or "").strip()
    if "," not in name:
        return name, ""
    last, first = name.split(",", 1)
    return first.strip(), last.strip()
