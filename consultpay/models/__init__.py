from consultpay.models.payment_order import PaymentOrderDocument
from consultpay.models.refund import RefundDocument
from consultpay.models.webhook_event import ProcessedWebhookEvent
from consultpay.models.audit_log import PaymentAuditLog
from consultpay.models.failed_job import DeadLetterJob

__all__ = [
    "PaymentOrderDocument",
    "RefundDocument",
    "ProcessedWebhookEvent",
    "PaymentAuditLog",
    "DeadLetterJob",
]
