"""
HTML bodies for outgoing emails. Each template takes the data dict passed to
`EmailNotifier.send_email` and returns (subject, html).
"""
from html import escape


def _money(amount) -> str:
    return f"${float(amount or 0):.2f}"


def _layout(title: str, body: str) -> str:
    return f"""
<!DOCTYPE html>
<html>
<head><meta charset="UTF-8"></head>
<body style="margin: 0; padding: 0; background-color: #f4f4f5; font-family: -apple-system, 'Segoe UI', Roboto, sans-serif;">
  <div style="max-width: 520px; margin: 0 auto; padding: 32px 16px;">
    <div style="background-color: #ffffff; border-radius: 12px; padding: 24px;">
      <h1 style="margin: 0 0 16px; font-size: 22px; color: #111827;">{escape(title)}</h1>
      {body}
    </div>
  </div>
</body>
</html>
"""


def _details(data: dict) -> str:
    return f"""
      <table style="width: 100%; border-collapse: collapse; margin: 16px 0;">
        <tr><td style="padding: 4px 0; color: #6b7280;">Booking</td><td style="text-align: right;">{escape(data['booking_number'])}</td></tr>
        <tr><td style="padding: 4px 0; color: #6b7280;">Rental</td><td style="text-align: right;">{escape(data['product_name'])}</td></tr>
        <tr><td style="padding: 4px 0; color: #6b7280;">Event date</td><td style="text-align: right;">{escape(data['event_date'])}</td></tr>
      </table>
"""


def booking_confirmed(data: dict) -> tuple[str, str]:
    body = f"""
      <p>Hi {escape(data['customer_name'])}, your deposit is in and your rental is confirmed.</p>
      {_details(data)}
      <p>Balance due on delivery: <strong>{_money(data.get('balance_due'))}</strong></p>
"""
    return f"Booking Confirmed - {data['booking_number']}", _layout("You're booked!", body)


def cancellation_received(data: dict) -> tuple[str, str]:
    refund_line = ""
    if data.get("suggested_refund"):
        refund_line = f"<p>Estimated refund: <strong>~{_money(data['suggested_refund'])}</strong></p>"
    body = f"""
      <p>Hi {escape(data['customer_name'])}, we received your cancellation request.</p>
      <p>We'll review it and get back to you within 24 hours.</p>
      {_details(data)}
      {refund_line}
      <p style="color: #6b7280;">Changed your mind? Reply to this email and we'll help you reschedule instead.</p>
"""
    return f"Cancellation Request Received - {data['booking_number']}", _layout("Request received", body)


def admin_cancellation_alert(data: dict) -> tuple[str, str]:
    body = f"""
      <p><strong>{escape(data['customer_name'])}</strong> ({escape(data['customer_email'])}) asked to cancel.</p>
      {_details(data)}
      <p>Suggested refund: <strong>{_money(data.get('suggested_refund'))}</strong></p>
      <p>Reason given: {escape(data.get('reason') or 'Not provided')}</p>
      <p><a href="{escape(data['review_url'])}">Review request</a></p>
"""
    return f"Cancellation Request - {data['booking_number']}", _layout("Cancellation request", body)


def cancellation_approved(data: dict) -> tuple[str, str]:
    amount = data.get("refund_amount") or 0
    if amount > 0:
        method = data.get("refund_method")
        via = f" via {escape(method)}" if method and method != "stripe" else " to your original payment method"
        refund_line = f"<p>A refund of <strong>{_money(amount)}</strong> is on its way{via}.</p>"
    else:
        refund_line = "<p>No refund applies under our cancellation policy.</p>"
    body = f"""
      <p>Hi {escape(data['customer_name'])}, your booking has been cancelled.</p>
      {_details(data)}
      {refund_line}
"""
    return f"Booking {data['booking_number']} Cancelled", _layout("Booking cancelled", body)


def cancellation_refunded(data: dict) -> tuple[str, str]:
    method = data.get("refund_method")
    manual = method is not None and method != "stripe"
    via = f"via {escape(method)}" if manual else "to your original payment method"
    body = f"""
      <p>Hi {escape(data['customer_name'])}, your refund of <strong>{_money(data.get('refund_amount'))}</strong> has been sent {via}.</p>
      {_details(data)}
      <p style="color: #6b7280;">Card refunds usually show up within 5-10 business days.</p>
"""
    subject = f"Refund {'Coming' if manual else 'Processed'} - {_money(data.get('refund_amount'))}"
    return subject, _layout("Refund sent", body)


def cancellation_denied(data: dict) -> tuple[str, str]:
    reason = ""
    if data.get("reason"):
        reason = f"<p>{escape(data['reason'])}</p>"
    body = f"""
      <p>Hi {escape(data['customer_name'])}, we weren't able to approve your cancellation request. Your booking is still on.</p>
      {_details(data)}
      {reason}
      <p style="color: #6b7280;">Questions? Just reply to this email.</p>
"""
    return f"Update on Booking {data['booking_number']}", _layout("Your booking is still on", body)


def booking_rescheduled(data: dict) -> tuple[str, str]:
    body = f"""
      <p>Hi {escape(data['customer_name'])}, your rental has been moved from {escape(data['previous_event_date'])}.</p>
      {_details(data)}
      <p>Delivery window: <strong>{escape(data.get('delivery_window') or 'As before')}</strong></p>
      <p style="color: #6b7280;">Questions? Just reply to this email.</p>
"""
    return f"Booking Rescheduled - {data['booking_number']}", _layout("Your new date is set", body)


def pending_bookings_expired(data: dict) -> tuple[str, str]:
    numbers = ", ".join(data.get("booking_numbers") or []) or "N/A"
    body = f"""
      <p>{data['count']} checkout(s) were abandoned for more than {data['expiry_minutes']} minutes and have been released.</p>
      <p>Bookings: {escape(numbers)}</p>
"""
    return f"Cleanup: {data['count']} abandoned booking(s) released", _layout("Pending bookings released", body)


TEMPLATES = {
    "booking_confirmed": booking_confirmed,
    "cancellation_received": cancellation_received,
    "admin_cancellation_alert": admin_cancellation_alert,
    "cancellation_approved": cancellation_approved,
    "cancellation_refunded": cancellation_refunded,
    "cancellation_denied": cancellation_denied,
    "booking_rescheduled": booking_rescheduled,
    "pending_bookings_expired": pending_bookings_expired,
}
