"""HTML and plain-text bodies for host notifications.

Pure rendering: callers pass already formatted values. Images are referenced
by content-id and attached by the caller.
"""

from html import escape

QR_CID = "visitor-qr-code"
PHOTO_CID = "visitor-photo"

_PRIMARY = "#2E5BFF"
_ACCENT = "#00D4AA"
_TEXT = "#2E384D"
_LIGHT_BG = "#F8F9FC"
_BORDER = "#E0E6FF"


def _rows(fields: list[tuple[str, str]]) -> str:
    cells = []
    for label, value in fields:
        cells.append(
            f'<tr><td style="padding:10px 14px;border-bottom:1px solid {_BORDER};color:#6B7A99;'
            f'font-weight:600;width:38%">{escape(label)}</td>'
            f'<td style="padding:10px 14px;border-bottom:1px solid {_BORDER};color:{_TEXT}">'
            f"{escape(value or '-')}</td></tr>"
        )
    return "".join(cells)


def _page(title: str, banner_color: str, body: str, company: str) -> str:
    return (
        "<!DOCTYPE html><html><head><meta charset=\"utf-8\">"
        f"<title>{escape(title)}</title></head>"
        f'<body style="margin:0;padding:24px;background:{_LIGHT_BG};font-family:Arial,Helvetica,sans-serif">'
        f'<div style="max-width:640px;margin:0 auto;background:#FFFFFF;border-radius:12px;'
        f'border:1px solid {_BORDER};overflow:hidden">'
        f'<div style="background:{banner_color};color:#FFFFFF;padding:20px 24px;font-size:20px;'
        f'font-weight:700">{escape(title)}</div>'
        f'<div style="padding:24px">{body}</div>'
        f'<div style="padding:14px 24px;background:{_LIGHT_BG};color:#8A94A6;font-size:12px">'
        f"This is an automated message from {escape(company)}.</div>"
        "</div></body></html>"
    )


def render_checkin_email(data: dict, has_photo: bool, company: str) -> tuple[str, str, str]:
    """Return (subject, text, html) for a new visitor alert."""
    subject = f"New Visitor: {data['visitor_name']}"
    fields = [
        ("Visitor", data["visitor_name"]),
        ("Mobile", data.get("mobile") or ""),
        ("Host", data.get("host_employee") or ""),
        ("Purpose", data["purpose"]),
        ("Check-in", data["checkin_display"]),
        ("Pass ID", data["pass_id"]),
    ]
    photo_html = ""
    if has_photo:
        photo_html = (
            f'<div style="text-align:center;margin-bottom:18px"><img src="cid:{PHOTO_CID}" '
            f'alt="Visitor photo" width="160" style="border-radius:8px;border:3px solid {_BORDER}"></div>'
        )
    body = (
        f'<p style="color:{_TEXT};font-size:15px">A visitor has checked in to see you. '
        "Please meet them at reception.</p>"
        f"{photo_html}"
        f'<table style="width:100%;border-collapse:collapse;font-size:14px">{_rows(fields)}</table>'
        f'<div style="text-align:center;margin-top:24px"><img src="cid:{QR_CID}" alt="Visitor QR pass" '
        'width="200" height="200"><p style="color:#8A94A6;font-size:12px">Scan to verify the visitor pass</p></div>'
    )
    text = "\n".join(
        ["A visitor has checked in to see you.", ""] + [f"{label}: {value or '-'}" for label, value in fields]
    )
    return subject, text, _page("New Visitor Arrival", _PRIMARY, body, company)


def render_checkout_email(data: dict, company: str) -> tuple[str, str, str]:
    """Return (subject, text, html) for a visit completion notice."""
    subject = f"Visitor Check-out: {data['visitor_name']}"
    fields = [
        ("Visitor", data["visitor_name"]),
        ("Host", data.get("host_employee") or ""),
        ("Check-in", data["checkin_display"]),
        ("Check-out", data["checkout_display"]),
        ("Duration", data["duration"]),
    ]
    body = (
        f'<p style="color:{_TEXT};font-size:15px">Your visitor has checked out.</p>'
        f'<table style="width:100%;border-collapse:collapse;font-size:14px">{_rows(fields)}</table>'
    )
    text = "\n".join(
        ["Your visitor has checked out.", ""] + [f"{label}: {value or '-'}" for label, value in fields]
    )
    return subject, text, _page("Visitor Checked Out", _ACCENT, body, company)
