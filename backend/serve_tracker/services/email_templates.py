"""
Serve Tracker Backend — Notification Email Content
====================================================

What:  Subjects and HTML bodies for serve-attempt emails.
How:   Plain string templates; every interpolated value is HTML-escaped.
"""

import html
from datetime import datetime
from urllib.parse import quote

from serve_tracker.schemas.serve_attempt import ZERO_COORDINATES, ServeAttempt, ServeStatus

MAPS_URL = "https://www.google.com/maps?q={query}"


def status_text(status: ServeStatus) -> str:
    return "Successful" if status == ServeStatus.COMPLETED else "Failed"


def created_subject(attempt: ServeAttempt) -> str:
    return f"New Serve Attempt {status_text(attempt.status)} - {attempt.case_name}"


def updated_subject(attempt: ServeAttempt) -> str:
    return f"Serve Attempt Updated - {attempt.case_name}"


def _format_timestamp(value: datetime) -> str:
    return value.strftime("%B %d, %Y at %I:%M %p %Z").strip()


def _row(label: str, value: str) -> str:
    return (
        f'<tr><td style="padding:4px 12px 4px 0;font-weight:bold;">{html.escape(label)}</td>'
        f'<td style="padding:4px 0;">{value}</td></tr>'
    )


def serve_email_body(attempt: ServeAttempt) -> str:
    """HTML summary of a serve attempt, with a map link when coordinates are known."""
    coordinates = html.escape(attempt.coordinates)
    if attempt.coordinates != ZERO_COORDINATES:
        link = MAPS_URL.format(query=quote(attempt.coordinates, safe=","))
        coordinates = f'<a href="{html.escape(link)}">{coordinates}</a>'

    rows = [
        _row("Client", html.escape(attempt.client_name)),
        _row("Case", html.escape(f"{attempt.case_name} ({attempt.case_number})")),
        _row("Address", html.escape(attempt.address or "Address not provided")),
        _row("Coordinates", coordinates),
        _row("Date", html.escape(_format_timestamp(attempt.timestamp))),
        _row("Attempt", str(attempt.attempt_number)),
        _row("Status", html.escape(status_text(attempt.status))),
        _row("Notes", html.escape(attempt.notes or "No notes provided").replace("\n", "<br>")),
    ]
    return (
        '<div style="font-family:Arial,sans-serif;">'
        "<h2>Serve Attempt Details</h2>"
        f"<table>{''.join(rows)}</table>"
        "<p>Photo evidence is attached when available.</p>"
        "</div>"
    )
