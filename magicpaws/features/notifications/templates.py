"""HTML email templates. Every value interpolated into markup is escaped."""
from html import escape
from typing import NamedTuple

from magicpaws.core.config import settings

BRAND = "Magic Paws Dog Training"

_STYLE = """
    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;
           line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { text-align: center; padding: 20px 0; border-bottom: 2px solid #14b8a6; }
    .header h1 { color: #14b8a6; margin: 0; font-size: 24px; }
    .content { padding: 30px 0; }
    .button { display: inline-block; background-color: #14b8a6; color: white !important;
              padding: 12px 24px; text-decoration: none; border-radius: 6px; font-weight: 600; }
    .details { background: #f5f5f5; padding: 15px; border-radius: 6px; margin: 20px 0; }
    .footer { text-align: center; padding: 20px 0; border-top: 1px solid #eee; color: #666; font-size: 14px; }
    .footer a { color: #14b8a6; }
"""


class RenderedEmail(NamedTuple):
    subject: str
    html: str


def _base_url() -> str:
    return settings.PUBLIC_BASE_URL.rstrip("/")


def wrap_email_template(content: str) -> str:
    """Wrap already-rendered body HTML in the branded layout."""
    base = escape(_base_url(), quote=True)
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{BRAND}</title>
  <style>{_STYLE}</style>
</head>
<body>
  <div class="header"><h1>{BRAND}</h1></div>
  <div class="content">
{content}
  </div>
  <div class="footer">
    <p>{BRAND} | Mill Valley, CA</p>
    <p><a href="{base}">Visit our website</a></p>
    <p style="font-size: 12px; color: #999;">
      If you no longer wish to receive these emails, you can
      <a href="{base}/dashboard/settings">update your preferences</a>.
    </p>
  </div>
</body>
</html>"""


def _details(*rows) -> str:
    lines = "".join(
        f'<p style="margin: 5px 0;"><strong>{escape(label)}:</strong> {escape(value)}</p>' for label, value in rows
    )
    return f'<div class="details">{lines}</div>'


def booking_confirmation(client_name: str, service_name: str, date: str, time: str) -> RenderedEmail:
    body = (
        "<h2>Your booking is confirmed!</h2>"
        f"<p>Hi {escape(client_name)},</p>"
        "<p>Great news! Your booking has been confirmed:</p>"
        + _details(("Service", service_name), ("Date", date), ("Time", time))
        + "<p>If you need to make any changes, please contact us as soon as possible.</p>"
        "<p>Looking forward to seeing you and your pup!</p>"
        "<p>Best,<br>Samantha</p>"
    )
    return RenderedEmail(f"Booking Confirmed: {service_name}", wrap_email_template(body))


def booking_reminder(client_name: str, service_name: str, date: str, time: str) -> RenderedEmail:
    body = (
        "<h2>Reminder: Your appointment is tomorrow!</h2>"
        f"<p>Hi {escape(client_name)},</p>"
        "<p>Just a friendly reminder about your upcoming appointment:</p>"
        + _details(("Service", service_name), ("Date", date), ("Time", time))
        + "<p>If you need to reschedule, please let us know as soon as possible.</p>"
        "<p>See you tomorrow!</p>"
        "<p>Best,<br>Samantha</p>"
    )
    return RenderedEmail(f"Reminder: {service_name} Tomorrow", wrap_email_template(body))


def new_training_content(client_name: str, tier_name: str, content_title: str) -> RenderedEmail:
    link = escape(f"{_base_url()}/dashboard/training", quote=True)
    body = (
        "<h2>New training content available!</h2>"
        f"<p>Hi {escape(client_name)},</p>"
        f"<p>New content has been added to your <strong>{escape(tier_name)}</strong> training tier:</p>"
        f'<div class="details"><p style="margin: 5px 0;"><strong>{escape(content_title)}</strong></p></div>'
        f'<p style="text-align: center;"><a href="{link}" class="button">Start Learning</a></p>'
        "<p>Happy training!</p>"
        "<p>Best,<br>Samantha</p>"
    )
    return RenderedEmail(f"New Training Content: {content_title}", wrap_email_template(body))
