"""Prompt builders for the classify and task-extraction passes."""

import json
from collections.abc import Sequence
from datetime import datetime

from inbox_enrich.processing.sanitizer import sanitize
from inbox_enrich.processing.types import Category, CustomLabel, InboundEmail

NO_CUSTOM_LABELS = "No custom labels provided."

# Instruction appended to both prompts; the response contract strips fences
# anyway, but asking keeps most responses clean.
_JSON_ONLY = (
    "Respond strictly with a valid JSON ARRAY and nothing else. "
    "Do not wrap it in markdown code fences."
)


def format_custom_labels(labels: Sequence[CustomLabel]) -> str:
    """Render smart-label rules verbatim as JSON, or the no-labels placeholder."""
    if not labels:
        return NO_CUSTOM_LABELS
    return json.dumps([{"name": label.name, "prompt": label.prompt} for label in labels])


def format_email_list(emails: Sequence[InboundEmail]) -> str:
    """Enumerate emails by id, sender and sanitized content."""
    return "\n\n".join(
        f"EMAIL_ID: {email.id}\nSENDER: {email.sender}\nCONTENT: {sanitize(email.body)}\n---"
        for email in emails
    )


def build_classify_prompt(
    emails: Sequence[InboundEmail],
    custom_labels: Sequence[CustomLabel] = (),
) -> str:
    """Build the single prompt that classifies every email in the batch."""
    categories = ", ".join(f'"{c.value}"' for c in Category)
    return (
        "You are an executive email assistant. Classify this batch of emails.\n\n"
        f"{format_email_list(emails)}\n\n"
        "For EACH email return exactly one object with:\n"
        '1. "id": the exact EMAIL_ID provided.\n'
        f'2. "category": one of {categories}.\n'
        '3. "summary": a one-sentence summary.\n'
        '4. "requiresReply": true or false.\n'
        '5. "draftReply": a short, professional 2-sentence reply if requiresReply '
        'is true, otherwise an empty string "".\n'
        '6. "appliedLabels": names of the custom labels whose rule matches the '
        f"email, evaluated independently of the category. Rules: "
        f"{format_custom_labels(custom_labels)}\n"
        "If no labels match, return an empty array.\n\n"
        f"The array must contain exactly {len(emails)} objects. {_JSON_ONLY}\n"
        "Format:\n"
        '[{"id": "EMAIL_ID", "category": "General", "summary": "...", '
        '"requiresReply": false, "draftReply": "", "appliedLabels": []}]'
    )


def build_extraction_prompt(
    emails: Sequence[InboundEmail],
    custom_labels: Sequence[CustomLabel],
    now: datetime,
) -> str:
    """Build the task-and-label extraction prompt, anchored to ``now``."""
    return (
        "You are an AI task extractor. Analyze this batch of emails.\n"
        f"The current date and time is {now.strftime('%A, %Y-%m-%d %H:%M %Z').strip()}.\n\n"
        f"{format_email_list(emails)}\n\n"
        "Instructions for EACH email:\n"
        "1. Tasks: extract action items, requests, or to-dos for the recipient. "
        "Note any deadline and whether it is urgent (\"ASAP\", \"by tonight\"). "
        "Mark a task past due if its deadline is before the current date and time.\n"
        "2. Smart labels: apply custom labels based on these user rules: "
        f"{format_custom_labels(custom_labels)}\n\n"
        f"The array must contain exactly {len(emails)} objects. {_JSON_ONLY}\n"
        "Format:\n"
        '[{"id": "EMAIL_ID", "tasks": [{"title": "The specific action item", '
        '"date": "Extracted date or \'No due date\'", "isUrgent": true, '
        '"isPastDue": false}], "appliedLabels": ["Label Name"]}]\n'
        "If there are no tasks or no labels match, use an empty array."
    )
