"""
Enrich founders and companies with public data.

Founders:
1. People-data API lookup by name + company (education, experience, headline)
2. GitHub user search to spot technical founders

Companies:
1. People-data API company lookup (team size, funding rounds, press)
2. Website probe: guess the domain from the company name, fetch the homepage
   and read it with BeautifulSoup for a product description and a
   technology footprint

API transport errors and non-2xx answers raise EnrichmentError. A 404 or an
unconfigured API means "no data", not an error. GitHub and the website
probe are best-effort and never raise.
"""

import logging
import re
from typing import Optional

import requests
from bs4 import BeautifulSoup

from sourcing import config, ratelimit, scoring
from sourcing.models import CompanySignals, Founder, FounderProfile, Startup

logger = logging.getLogger(__name__)

_BROWSER_UA = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

_NAME_SUFFIXES = [
    " limited",
    " ltd",
    " plc",
    " llp",
    " inc",
    " (uk)",
    " uk",
    " group",
    " holdings",
    " technologies",
    " technology",
    " labs",
]

_DOMAIN_EXTENSIONS = [".com", ".co.uk", ".io", ".ai"]

_PARKING_INDICATORS = [
    "domain is for sale",
    "buy this domain",
    "domain parking",
    "parked domain",
    "this website is for sale",
    "account suspended",
    "domain expired",
]

# Markers in script/link URLs and generator tags that reveal the stack
_TECH_MARKERS = {
    "react": "React",
    "_next/": "Next.js",
    "vue": "Vue",
    "angular": "Angular",
    "webflow": "Webflow",
    "framer": "Framer",
    "stripe": "Stripe",
    "intercom": "Intercom",
    "segment": "Segment",
    "hubspot": "HubSpot",
    "googletagmanager": "Google Tag Manager",
    "vercel": "Vercel",
    "cloudflare": "Cloudflare",
}

# Calls to action that only make sense on a working product site
_PRODUCT_CUES = [
    "sign up", "get started", "start free", "free trial", "request a demo",
    "book a demo", "log in", "pricing", "download the app",
]

_TECHNICAL_TITLES = [
    "engineer", "developer", "cto", "architect", "scientist",
    "machine learning", "data", "devops", "programmer",
]

_MIN_REPOS_FOR_TECHNICAL = 5


class EnrichmentError(Exception):
    """An enrichment API could not be reached or answered with an error."""


def _people_api_post(path: str, payload: dict) -> Optional[dict]:
    if not config.PEOPLE_DATA_API_URL:
        logger.debug("No people-data API configured – skipping %s", path)
        return None

    url = f"{config.PEOPLE_DATA_API_URL.rstrip('/')}{path}"
    headers = dict(config.REQUEST_HEADERS)
    if config.PEOPLE_DATA_API_KEY:
        headers["Authorization"] = f"Bearer {config.PEOPLE_DATA_API_KEY}"
    ratelimit.limiter("people_data").acquire()
    try:
        resp = requests.post(url, json=payload, headers=headers, timeout=config.REQUEST_TIMEOUT)
    except requests.RequestException as exc:
        raise EnrichmentError(f"People-data request failed for {path}: {exc}") from exc

    if resp.status_code == 404:
        return None
    if not 200 <= resp.status_code < 300:
        raise EnrichmentError(f"People-data API returned {resp.status_code} for {path}")
    try:
        return resp.json()
    except ValueError as exc:
        raise EnrichmentError(f"People-data API sent invalid JSON for {path}") from exc


# ---------------------------------------------------------------------------
# Founders
# ---------------------------------------------------------------------------

def _profile_from_person(data: dict) -> FounderProfile:
    education = []
    degrees = []
    for entry in data.get("education") or []:
        school = entry.get("school") or entry.get("name") or ""
        degree = entry.get("degree") or ""
        degrees.append(degree.lower())
        education.append({
            "school": school,
            "degree": degree,
            "is_top_tier": scoring.is_top_tier_school(school),
        })

    experience = []
    founder_roles = 0
    technical = False
    for entry in data.get("experience") or []:
        company = entry.get("company") or ""
        title = entry.get("title") or ""
        title_lower = title.lower()
        if "founder" in title_lower:
            founder_roles += 1
        if any(t in title_lower for t in _TECHNICAL_TITLES):
            technical = True
        experience.append({
            "company": company,
            "title": title,
            "is_high_growth": scoring.is_high_growth_company(company),
        })

    headline = data.get("headline") or ""
    headline_lower = headline.lower()

    return FounderProfile(
        linkedin_url=data.get("linkedin_url"),
        email=data.get("email"),
        headline=headline or None,
        location=data.get("location"),
        education=education,
        experience=experience,
        years_of_experience=int(data.get("years_of_experience") or 0),
        # The current company counts as one founder role
        is_repeat_founder=bool(data.get("is_repeat_founder")) or founder_roles >= 2,
        is_technical_founder=technical,
        previous_exits=int(data.get("previous_exits") or 0),
        has_phd=any(d in deg for deg in degrees for d in ("phd", "dphil", "doctor")),
        has_mba=any("mba" in deg for deg in degrees),
        is_stealth_mode="stealth" in headline_lower,
        is_recently_announced="recently launched" in headline_lower or "just launched" in headline_lower,
    )


def find_github_profile(first_name: str, last_name: str) -> Optional[dict]:
    """Best GitHub match for a name: {url, public_repos} or None."""
    if not first_name or not last_name:
        return None

    headers = {"Accept": "application/vnd.github.v3+json", "User-Agent": "StartupSourcing/1.0"}
    if config.GITHUB_TOKEN:
        headers["Authorization"] = f"token {config.GITHUB_TOKEN}"
    try:
        ratelimit.limiter("github").acquire()
        resp = requests.get(
            f"{config.GITHUB_API_URL}/search/users",
            params={"q": f"{first_name} {last_name} in:name", "per_page": 5},
            headers=headers,
            timeout=config.REQUEST_TIMEOUT,
        )
        if resp.status_code == 403:
            logger.warning("GitHub API rate limited")
            return None
        resp.raise_for_status()
        items = resp.json().get("items") or []
        if not items:
            return None

        ratelimit.limiter("github").acquire()
        user_resp = requests.get(
            f"{config.GITHUB_API_URL}/users/{items[0]['login']}",
            headers=headers,
            timeout=config.REQUEST_TIMEOUT,
        )
        user_resp.raise_for_status()
        user = user_resp.json()
    except (requests.RequestException, ValueError, KeyError) as exc:
        logger.warning("GitHub lookup failed for %s %s: %s", first_name, last_name, exc)
        return None

    return {
        "url": user.get("html_url"),
        "public_repos": user.get("public_repos") or 0,
    }


def enrich_founder(founder: Founder, startup: Startup) -> Optional[FounderProfile]:
    """
    Look a founder up. Returns None when no source knows anything about them.

    Raises EnrichmentError if the people-data API fails.
    """
    data = _people_api_post("/person/enrich", {
        "first_name": founder.first_name,
        "last_name": founder.last_name,
        "company": startup.company_name,
        "location": founder.nationality or "",
    })
    profile = _profile_from_person(data) if data else None

    github = find_github_profile(founder.first_name, founder.last_name)
    if github:
        profile = profile or FounderProfile()
        profile.github_url = github["url"]
        if github["public_repos"] >= _MIN_REPOS_FOR_TECHNICAL:
            profile.is_technical_founder = True

    if profile is None:
        logger.info("No enrichment data for %s", founder.full_name)
    return profile


# ---------------------------------------------------------------------------
# Companies
# ---------------------------------------------------------------------------

def _clean_name(company_name: str) -> str:
    name = company_name.strip()
    for suffix in _NAME_SUFFIXES:
        if name.lower().endswith(suffix):
            name = name[: -len(suffix)].strip()
    return name


def _domain_candidates(company_name: str) -> list[str]:
    clean = re.sub(r"[^a-z0-9\s]", "", _clean_name(company_name).lower()).strip()
    slug = re.sub(r"\s+", "", clean)
    if not slug:
        return []
    return [f"https://{slug}{ext}" for ext in _DOMAIN_EXTENSIONS]


def probe_website(url: str) -> Optional[dict]:
    """
    Fetch a homepage and read it.

    Returns {url, description, tech_stack, has_live_product} or None when the
    page is unreachable or parked.
    """
    try:
        resp = requests.get(
            url,
            timeout=10,
            allow_redirects=True,
            headers={"User-Agent": _BROWSER_UA},
        )
    except requests.RequestException:
        return None
    if resp.status_code != 200:
        return None

    page_lower = resp.text.lower()
    if any(indicator in page_lower for indicator in _PARKING_INDICATORS):
        logger.debug("Skipping parked domain: %s", url)
        return None

    soup = BeautifulSoup(resp.text, "html.parser")

    description = None
    for attrs in ({"name": "description"}, {"property": "og:description"}):
        tag = soup.find("meta", attrs=attrs)
        if tag and tag.get("content"):
            description = tag["content"].strip()
            break

    sources = [tag.get("src", "") for tag in soup.find_all("script")]
    sources += [tag.get("href", "") for tag in soup.find_all("link")]
    generator = soup.find("meta", attrs={"name": "generator"})
    if generator and generator.get("content"):
        sources.append(generator["content"])
    haystack = " ".join(sources).lower()
    tech_stack = sorted({label for marker, label in _TECH_MARKERS.items() if marker in haystack})

    text = soup.get_text(" ", strip=True).lower()
    has_live_product = bool(description) and any(cue in text for cue in _PRODUCT_CUES)

    return {
        "url": resp.url or url,
        "description": description,
        "tech_stack": tech_stack,
        "has_live_product": has_live_product,
    }


def find_company_website(company_name: str) -> Optional[dict]:
    for url in _domain_candidates(company_name):
        probe = probe_website(url)
        if probe:
            logger.info("Found website via domain guess: %s", probe["url"])
            return probe
    return None


def enrich_company(startup: Startup) -> CompanySignals:
    """
    Company-level signals for traction scoring.

    Raises EnrichmentError if the people-data API fails; the caller skips the
    startup for this run.
    """
    data = _people_api_post("/company/enrich", {
        "name": startup.company_name,
        "company_number": startup.company_number,
        "website": startup.website or "",
    }) or {}

    signals = CompanySignals(
        website=data.get("website") or startup.website,
        description=data.get("description") or startup.description,
        news_articles=list(data.get("news") or []),
        funding_rounds=list(data.get("funding_rounds") or []),
        estimated_funding=data.get("total_funding"),
        team_size=data.get("team_size"),
        tech_stack=list(data.get("tech_stack") or []),
    )

    probe = probe_website(signals.website) if signals.website else find_company_website(startup.company_name)
    if probe:
        signals.website = probe["url"]
        signals.description = signals.description or probe["description"]
        signals.tech_stack = sorted(set(signals.tech_stack) | set(probe["tech_stack"]))
        signals.has_live_product = probe["has_live_product"]

    labels = [str(r.get("stage", "")) if isinstance(r, dict) else str(r) for r in signals.funding_rounds]
    if data.get("funding_stage"):
        labels.append(str(data["funding_stage"]))
    signals.funding_stage = scoring.infer_funding_stage(labels)
    return signals
