"""
Run summary for post-run review.

Summarises:
- What the last pipeline run did (discovered, enriched, qualified, queued)
- What the last queue cycle sent
- Funnel counts per stage
- Queue status and recent sends
"""

import logging
import os
from datetime import date, datetime, timezone
from typing import Optional

from jinja2 import Environment, FileSystemLoader, TemplateNotFound

from sourcing import stages
from sourcing.outreach.config import OUTREACH_CONFIG
from sourcing.outreach.db import get_history, get_queue_stats
from sourcing.outreach.sender import send_email

logger = logging.getLogger(__name__)

_TEMPLATE_DIR = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))),
    "templates",
)

_FALLBACK_TEMPLATE = """SOURCING SUMMARY - {{ today }}
==================================================
{% if report %}
LAST RUN
  Discovered: {{ report.discover.get('saved', 0) }}
  Enriched:   {{ report.enrich.get('enriched', 0) }}
  Qualified:  {{ report.qualify.get('qualified', 0) }}
  Queued:     {{ report.queue.get('queued', 0) }}
  Errors:     {{ report.errors|length }}
{% endif %}{% if queue_results %}
QUEUE CYCLE
  Sent: {{ queue_results.sent }}  Retrying: {{ queue_results.retrying }}  Failed: {{ queue_results.failed }}
{% endif %}
FUNNEL ({{ pipeline.total }} startups)
{% for stage, count in pipeline.by_stage.items() %}  {{ stage }}: {{ count }}
{% endfor %}
QUEUE
  Queued: {{ queue.queued }}  Sending: {{ queue.sending }}  Sent: {{ queue.sent }}  Failed: {{ queue.failed }}
"""

_env = None


def _get_env() -> Environment:
    """Get or create Jinja2 environment."""
    global _env
    if _env is None:
        _env = Environment(
            loader=FileSystemLoader(_TEMPLATE_DIR),
            trim_blocks=True,
            lstrip_blocks=True,
        )
    return _env


def _format_ms(value: Optional[int]) -> str:
    if not value:
        return "-"
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).strftime("%d %b %H:%M")


def generate_summary_text(
    user_id: str,
    report: Optional[dict] = None,
    queue_results: Optional[dict] = None,
) -> str:
    """
    Render the plain-text summary.

    Args:
        user_id: Whose funnel and queue to summarise
        report: PipelineReport.to_dict() from the last run, if any
        queue_results: Result dict of the last queue cycle, if any
    """
    context = {
        'today': date.today().strftime("%d %b %Y"),
        'report': report,
        'queue_results': queue_results,
        'pipeline': stages.get_pipeline_stats(user_id),
        'queue': get_queue_stats(user_id),
        'recent': [
            {'founder_id': r.founder_id, 'subject': r.subject or "", 'sent_at': _format_ms(r.sent_at)}
            for r in get_history(user_id, limit=5)
        ],
    }

    env = _get_env()
    try:
        template = env.get_template("summary.txt")
    except TemplateNotFound:
        template = env.from_string(_FALLBACK_TEMPLATE)
    return template.render(**context)


def send_summary_email(
    user_id: str,
    report: Optional[dict] = None,
    queue_results: Optional[dict] = None,
    recipient: Optional[str] = None,
    dry_run: bool = False,
) -> bool:
    """
    Send the run summary email.

    Returns:
        True if sent successfully
    """
    to_email = recipient or OUTREACH_CONFIG.get('SUMMARY_EMAIL_TO', '')
    if not to_email:
        logger.warning("No summary email recipient configured")
        return False

    subject = f"Sourcing Summary - {date.today().strftime('%d %b %Y')}"
    body = generate_summary_text(user_id, report, queue_results)

    if dry_run:
        logger.info("[DRY RUN] Would send summary to %s", to_email)
        print(body)
        return True

    result = send_email(to_email=to_email, subject=subject, body=body)
    if result.success:
        logger.info("Summary email sent to %s", to_email)
        return True
    logger.error("Failed to send summary: %s", result.error)
    return False


def print_status(user_id: str) -> None:
    """Print funnel and queue status to console."""
    pipeline = stages.get_pipeline_stats(user_id)
    queue = get_queue_stats(user_id)
    today = date.today().strftime("%d %b %Y")

    print()
    print("╔" + "═" * 70 + "╗")
    print(f"║{'SOURCING STATUS - ' + today:^70}║")
    print("╠" + "═" * 70 + "╣")
    print("║" + " " * 70 + "║")

    print("║  FUNNEL" + " " * 62 + "║")
    for stage in stages.STAGES:
        print(f"║  ├─ {stage + ':':<22}{pipeline['by_stage'].get(stage, 0):<43}║")
    avg = pipeline['average_score']
    print(f"║  ├─ {'stealth:':<22}{pipeline['stealth']:<43}║")
    print(f"║  └─ {'average score:':<22}{('-' if avg is None else avg):<43}║")
    print("║" + " " * 70 + "║")

    print("║  QUEUE" + " " * 63 + "║")
    print(f"║  ├─ {'queued:':<22}{queue['queued']:<43}║")
    print(f"║  ├─ {'sending:':<22}{queue['sending']:<43}║")
    print(f"║  ├─ {'sent:':<22}{queue['sent']:<43}║")
    print(f"║  ├─ {'failed:':<22}{queue['failed']:<43}║")
    print(f"║  └─ {'next send:':<22}{_format_ms(queue['next_scheduled_for']):<43}║")
    print("║" + " " * 70 + "║")
    print("╚" + "═" * 70 + "╝")
    print()
