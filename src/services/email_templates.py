# src/services/email_templates.py
import re
from dataclasses import dataclass
from typing import Any, Dict

PLACEHOLDER_RE = re.compile(r"\{\{(\w+)\}\}")


@dataclass(frozen=True)
class EmailTemplate:
    name: str
    subject: str
    html: str
    text: str


def render_template(template: str, data: Dict[str, Any]) -> str:
    """
    Substitute ``{{key}}`` placeholders from ``data``.

    Unknown placeholders are left as they are and values are inserted
    verbatim; callers rendering HTML escape the values first.
    """

    def _sub(match: "re.Match[str]") -> str:
        key = match.group(1)
        return str(data[key]) if key in data and data[key] is not None else match.group(0)

    return PLACEHOLDER_RE.sub(_sub, template)


EMAIL_VERIFICATION = EmailTemplate(
    name="email_verification",
    subject="Verify Your NeuroCore AI Account",
    html=(
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<h1 style="color: #2563eb;">Welcome to NeuroCore AI!</h1>'
        "<p>Hi {{name}},</p>"
        "<p>Please verify your email address by clicking the button below:</p>"
        '<a href="{{verificationUrl}}" style="display: inline-block; background-color: #2563eb; color: white; '
        'padding: 12px 24px; text-decoration: none; border-radius: 6px;">Verify Email Address</a>'
        "<p>If the button doesn't work, copy this link into your browser:</p>"
        '<p style="word-break: break-all; color: #6b7280;">{{verificationUrl}}</p>'
        "<p>This verification link will expire in {{expiresIn}}.</p>"
        '<p style="color: #6b7280; font-size: 14px;">If you didn\'t create this account, you can safely ignore this email.</p>'
        "</div>"
    ),
    text=(
        "Welcome to NeuroCore AI!\n\n"
        "Hi {{name}},\n\n"
        "Please verify your email address by visiting this link:\n\n"
        "{{verificationUrl}}\n\n"
        "This verification link will expire in {{expiresIn}}.\n\n"
        "If you didn't create this account, you can safely ignore this email.\n"
    ),
)

PASSWORD_RESET = EmailTemplate(
    name="password_reset",
    subject="Reset Your NeuroCore AI Password",
    html=(
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<h1 style="color: #dc2626;">Password Reset Request</h1>'
        "<p>Hi {{name}},</p>"
        "<p>We received a request to reset your password. Click the button below to create a new password:</p>"
        '<a href="{{resetUrl}}" style="display: inline-block; background-color: #dc2626; color: white; '
        'padding: 12px 24px; text-decoration: none; border-radius: 6px;">Reset Password</a>'
        '<p style="word-break: break-all; color: #6b7280;">{{resetUrl}}</p>'
        "<p><strong>This link will expire in {{expiresIn}}.</strong></p>"
        '<p style="color: #6b7280; font-size: 14px;">If you didn\'t request this, you can safely ignore this email. '
        "Your password will not be changed.</p>"
        "</div>"
    ),
    text=(
        "Password Reset Request\n\n"
        "Hi {{name}},\n\n"
        "We received a request to reset your password. Visit this link to create a new password:\n\n"
        "{{resetUrl}}\n\n"
        "This link will expire in {{expiresIn}}.\n\n"
        "If you didn't request this, you can safely ignore this email. Your password will not be changed.\n"
    ),
)

WELCOME = EmailTemplate(
    name="welcome",
    subject="Welcome to NeuroCore AI!",
    html=(
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<h1 style="color: #059669;">Welcome to NeuroCore AI!</h1>'
        "<p>Hi {{name}},</p>"
        "<p>Your account is active and ready to use.</p>"
        '<a href="{{dashboardUrl}}" style="display: inline-block; background-color: #059669; color: white; '
        'padding: 12px 24px; text-decoration: none; border-radius: 6px;">Open your dashboard</a>'
        '<p style="color: #6b7280; font-size: 14px;">Need help? Contact us at {{supportEmail}}.</p>'
        "</div>"
    ),
    text=(
        "Welcome to NeuroCore AI!\n\n"
        "Hi {{name}},\n\n"
        "Your account is active and ready to use.\n\n"
        "Get started: {{dashboardUrl}}\n\n"
        "Need help? Contact us at {{supportEmail}}.\n"
    ),
)

TEMPLATES: Dict[str, EmailTemplate] = {t.name: t for t in (EMAIL_VERIFICATION, PASSWORD_RESET, WELCOME)}


def get_template(name: str) -> EmailTemplate:
    try:
        return TEMPLATES[name]
    except KeyError:
        raise LookupError(f"email template '{name}' not found")
