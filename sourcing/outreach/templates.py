"""
Outreach message templates.

Template bodies use {{placeholder}} (or {placeholder}) markers, replaced
literally; anything not known is left as written:

    firstName, lastName, companyName, headline

Built-in templates:
- Founder intro (email)
- Stealth founder (email)
- LinkedIn connection note
"""

import logging
from typing import Optional

from sourcing import db
from sourcing.models import Founder, Startup, Template
from sourcing.outreach.config import OUTREACH_CONFIG

logger = logging.getLogger(__name__)

PLACEHOLDERS = ('firstName', 'lastName', 'companyName', 'headline')


def _sign_off() -> str:
    return OUTREACH_CONFIG.get('SENDER_NAME') or 'Your Name'


def _builtin_templates() -> list[dict]:
    return [
        {
            'name': 'Founder Intro',
            'type': 'email',
            'subject': 'Quick intro - {{companyName}}',
            'body': (
                "Hi {{firstName}},\n\n"
                "I came across {{companyName}} and was impressed by what you're building. "
                "I work with early-stage VCs and help connect promising founders with "
                "investors who are a good fit.\n\n"
                "I'd love to learn more about your journey and see if I can be helpful - "
                "whether that's introductions to relevant investors, feedback on your pitch, "
                "or just sharing what I'm seeing in the market.\n\n"
                "Would you be open to a quick 15-minute chat this week?\n\n"
                f"Best,\n{_sign_off()}"
            ),
            'is_default': True,
        },
        {
            'name': 'Stealth Founder Outreach',
            'type': 'email',
            'subject': 'Connecting with stealth founders',
            'body': (
                "Hi {{firstName}},\n\n"
                "I noticed you're working on something new and wanted to reach out. "
                "I spend my time connecting exceptional founders with early-stage VCs, "
                "particularly at pre-seed and seed.\n\n"
                "When you're ready to start conversations with investors, I'd be happy to "
                "make some warm introductions to funds that would be a good fit.\n\n"
                "No pressure at all. Feel free to reach out whenever the timing is right.\n\n"
                f"Best,\n{_sign_off()}"
            ),
            'is_default': False,
        },
        {
            'name': 'LinkedIn Connection',
            'type': 'linkedin',
            'subject': None,
            'body': (
                "Hi {{firstName}}, I came across {{companyName}} and was impressed. "
                "I connect founders with early-stage VCs - would love to chat if you're "
                "exploring funding options."
            ),
            'is_default': True,
        },
    ]


def personalize_text(text: Optional[str], variables: dict) -> str:
    """Replace {{key}} then {key} for each variable. Unknown markers stay as-is."""
    result = text or ""
    for key, value in variables.items():
        result = result.replace("{{" + key + "}}", value)
        result = result.replace("{" + key + "}", value)
    return result


def founder_variables(founder: Founder, startup: Optional[Startup]) -> dict:
    return {
        'firstName': founder.first_name or "",
        'lastName': founder.last_name or "",
        'companyName': startup.company_name if startup else "",
        'headline': founder.headline or "",
    }


def render_for_founder(template: Template, founder: Founder, startup: Optional[Startup]) -> tuple[Optional[str], str]:
    """
    Personalize a template for one founder.

    Returns:
        (subject, message); subject is None when the template has none
    """
    variables = founder_variables(founder, startup)
    subject = personalize_text(template.subject, variables) or None
    message = personalize_text(template.body, variables)
    return subject, message


def builtin_template(type: str = 'email') -> Template:
    """The built-in default of a type, not stored."""
    for builtin in _builtin_templates():
        if builtin['type'] == type and builtin['is_default']:
            return Template(
                name=builtin['name'], type=builtin['type'], subject=builtin['subject'],
                body=builtin['body'], is_default=1,
            )
    raise ValueError(f"No built-in template for {type!r}")


def resolve_template(user_id: str, type: str = 'email') -> Template:
    """The user's default template of a type, or the built-in one."""
    template = db.get_default_template(user_id, type)
    if template is None:
        logger.debug("No %s template for %s, using built-in", type, user_id)
        return builtin_template(type)
    return template


def seed_default_templates(user_id: str) -> int:
    """Store the built-in templates for a user who has none. Returns how many were created."""
    if db.list_templates(user_id):
        return 0
    created = 0
    for builtin in _builtin_templates():
        db.create_template(
            user_id,
            name=builtin['name'],
            body=builtin['body'],
            type=builtin['type'],
            subject=builtin['subject'],
            is_default=builtin['is_default'],
        )
        created += 1
    logger.info("Seeded %d default templates for %s", created, user_id)
    return created
