"""
HTML email templates for workflow notifications
Each template returns (subject, html) for one notification event
"""

from html import escape
from typing import Optional

from ..config import FRONTEND_URL

THEME = {
    "primary": "#475569",
    "primary_dark": "#1e293b",
    "background": "#f8fafc",
    "card_bg": "#ffffff",
    "text_primary": "#0f172a",
    "text_secondary": "#334155",
    "text_muted": "#64748b",
    "border": "#e2e8f0",
    "success": "#16a34a",
    "danger": "#ef4444",
}

BUSINESS_NAME = "RMV Stainless Steel Fabrication"

STATUS_LABELS = {
    "approved": "Approved",
    "in_fabrication": "In Fabrication",
    "ready_for_installation": "Ready for Installation",
    "in_installation": "Installation in Progress",
    "completed": "Completed",
}


def get_base_template(
    title: str,
    content: str,
    cta_url: Optional[str] = None,
    cta_label: Optional[str] = None,
) -> str:
    """Base HTML wrapper for all emails"""
    cta_section = ""
    if cta_url and cta_label:
        cta_section = f"""
        <p style="text-align:center;margin:28px 0;">
          <a href="{cta_url}" style="background:{THEME['primary']};color:#ffffff;padding:14px 32px;
             border-radius:8px;text-decoration:none;font-weight:600;">{cta_label}</a>
        </p>
        """

    return f"""
    <html>
      <body style="background:{THEME['background']};font-family:Arial,sans-serif;color:{THEME['text_secondary']};">
        <div style="max-width:600px;margin:0 auto;background:{THEME['card_bg']};padding:32px;
                    border:1px solid {THEME['border']};border-radius:12px;">
          <h2 style="color:{THEME['text_primary']};margin-top:0;">{title}</h2>
          {content}
          {cta_section}
          <p style="font-size:12px;color:{THEME['text_muted']};margin-top:32px;">{BUSINESS_NAME}</p>
        </div>
      </body>
    </html>
    """


def _format_datetime(value) -> str:
    if not value:
        return "-"
    if isinstance(value, str):
        return value
    return value.strftime("%B %d, %Y %I:%M %p")


def appointment_confirmation_template(data: dict) -> tuple[str, str]:
    content = f"""
    <p>Hi {escape(data.get('customer_name', ''))},</p>
    <p>Your {escape(data.get('appointment_type', 'appointment').replace('_', ' '))} is confirmed.</p>
    <p><strong>When:</strong> {_format_datetime(data.get('scheduled_date'))}<br/>
       <strong>With:</strong> {escape(data.get('sales_staff_name', ''))}</p>
    """
    return "Your appointment is confirmed", get_base_template(
        "Appointment Confirmed", content, f"{FRONTEND_URL}/appointments", "View Appointment"
    )


def appointment_cancellation_template(data: dict) -> tuple[str, str]:
    content = f"""
    <p>Hi {escape(data.get('customer_name', ''))},</p>
    <p>{escape(data.get('message', ''))}</p>
    <p><strong>Original schedule:</strong> {_format_datetime(data.get('scheduled_date'))}<br/>
       <strong>Reason:</strong> {escape(data.get('reason', ''))}</p>
    """
    return "Your appointment has been cancelled", get_base_template(
        "Appointment Cancelled", content, f"{FRONTEND_URL}/appointments/new", "Book Again"
    )


def blueprint_ready_template(data: dict) -> tuple[str, str]:
    content = f"""
    <p>Hi {escape(data.get('customer_name', ''))},</p>
    <p>The blueprint and costing for <strong>{escape(data.get('project_title', ''))}</strong>
       ({escape(data.get('project_number', ''))}) are ready for your review.</p>
    <p>Please approve the design or request a revision.</p>
    """
    return "Your blueprint is ready for review", get_base_template(
        "Blueprint Ready", content, f"{FRONTEND_URL}/projects/{data.get('project_id')}", "Review Project"
    )


def payment_verification_template(data: dict) -> tuple[str, str]:
    content = f"""
    <p>Hi {escape(data.get('customer_name', ''))},</p>
    <p>We received your {escape(data.get('stage', ''))} payment for
       {escape(data.get('project_number', ''))}.</p>
    <p><strong>Amount:</strong> ₱{data.get('amount_received')}<br/>
       <strong>Receipt:</strong> {escape(data.get('receipt_number', ''))}</p>
    """
    return "Payment verified", get_base_template("Payment Verified", content)


def project_status_update_template(data: dict) -> tuple[str, str]:
    status = data.get("status", "")
    label = STATUS_LABELS.get(status, status.replace("_", " ").title())
    content = f"""
    <p>Hi {escape(data.get('customer_name', ''))},</p>
    <p>Your project <strong>{escape(data.get('project_title', ''))}</strong>
       ({escape(data.get('project_number', ''))}) is now <strong>{label}</strong>.</p>
    """
    return f"Project update: {label}", get_base_template(
        "Project Update", content, f"{FRONTEND_URL}/projects/{data.get('project_id')}", "View Project"
    )


TEMPLATES = {
    "appointment_confirmation": appointment_confirmation_template,
    "appointment_cancellation": appointment_cancellation_template,
    "blueprint_ready": blueprint_ready_template,
    "payment_verification": payment_verification_template,
    "project_status_update": project_status_update_template,
}


def render(event_name: str, data: dict) -> tuple[str, str]:
    """Render the template registered for ``event_name``"""
    template = TEMPLATES.get(event_name)
    if template is None:
        raise KeyError(f"No email template for event '{event_name}'")
    return template(data)
