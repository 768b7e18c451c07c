"""
Database models - import all models here so Alembic can discover them.
"""
from formsync.models.webhook_registration import WebhookRegistration
from formsync.models.webhook_ping import WebhookPing
from formsync.models.form import Form
from formsync.models.form_response import FormResponse

__all__ = [
    "WebhookRegistration",
    "WebhookPing",
    "Form",
    "FormResponse",
]
