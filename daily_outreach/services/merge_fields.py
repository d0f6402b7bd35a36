"""
Merge field rendering for generated emails.
Placeholders look like {{first_name}} and are filled from contact, company
and sender data when the email is shown or sent.
"""
import re
from typing import Dict, Optional

from daily_outreach.models.contact import Contact, Company
from daily_outreach.models.profile import SenderProfile

MERGE_FIELD_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def build_merge_values(
    contact: Optional[Contact],
    company: Optional[Company],
    sender: Optional[SenderProfile] = None
) -> Dict[str, str]:
    values = {}
    if contact:
        values.update({
            "first_name": contact.first_name,
            "last_name": contact.last_name,
            "contact_name": contact.name or "",
            "contact_role": contact.role or "",
        })
    if company:
        values.update({
            "contact_company_name": company.name or "",
            "company_name": company.name or "",
        })
    if sender:
        values.update({
            "sender_name": sender.display_name or "",
            "sender_company_name": sender.company_name or "",
        })
    return values


def resolve_merge_fields(
    content: str,
    contact: Optional[Contact],
    company: Optional[Company],
    sender: Optional[SenderProfile] = None
) -> str:
    """Replace known placeholders; unknown ones are left as written."""
    if not content:
        return content

    values = build_merge_values(contact, company, sender)

    def _replace(match: re.Match) -> str:
        name = match.group(1).lower()
        if name in values:
            return values[name]
        return match.group(0)

    return MERGE_FIELD_PATTERN.sub(_replace, content)
