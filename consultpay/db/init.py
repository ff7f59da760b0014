import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING

from consultpay.core.config import Settings, get_settings
from consultpay.models.audit_log import PaymentAuditLog
from consultpay.models.failed_job import DeadLetterJob
from consultpay.models.payment_order import PaymentOrderDocument
from consultpay.models.refund import RefundDocument
from consultpay.models.webhook_event import ProcessedWebhookEvent

DOCUMENT_MODELS = [
    PaymentOrderDocument,
    RefundDocument,
    ProcessedWebhookEvent,
    PaymentAuditLog,
    DeadLetterJob,
]


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


def create_client(settings: Settings) -> AsyncIOMotorClient:
    # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
    kwargs = {}
    if _use_tls(settings.mongodb_uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    return AsyncIOMotorClient(settings.mongodb_uri, **kwargs)


async def init_db(client: AsyncIOMotorClient | None = None, settings: Settings | None = None) -> AsyncIOMotorDatabase:
    settings = settings or get_settings()
    client = client or create_client(settings)
    database = client[settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    await ProcessedWebhookEvent.get_motor_collection().create_index(
        [("created_at", ASCENDING)],
        name="dedup_ttl",
        expireAfterSeconds=settings.webhook_dedup_ttl_seconds,
    )
    return database
