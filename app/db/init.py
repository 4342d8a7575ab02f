import certifi
from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from app.core.config import get_settings
from app.models.account import Account
from app.models.audit_log import AuditLog
from app.models.balance_transaction import BalanceTransaction
from app.models.failed_job import FailedJob
from app.models.processed_checkout import ProcessedCheckout

DOCUMENT_MODELS = [
    Account,
    BalanceTransaction,
    ProcessedCheckout,
    AuditLog,
    FailedJob,
]

_client: AsyncIOMotorClient | None = None


def _use_tls(uri: str) -> bool:
    """True if URI uses TLS (Atlas or explicit tls=true). Avoids TLS for plain mongodb:// in CI."""
    return "mongodb+srv://" in uri or "tls=true" in uri.lower()


async def init_db(uri: str | None = None, db_name: str | None = None) -> AsyncIOMotorClient:
    global _client
    settings = get_settings()
    uri = uri or settings.mongodb_uri
    # Atlas in Docker: tlsCAFile + tlsDisableOCSPEndpointCheck avoid TLSV1_ALERT_INTERNAL_ERROR
    kwargs = {}
    if _use_tls(uri):
        kwargs["tlsCAFile"] = certifi.where()
        kwargs["tlsDisableOCSPEndpointCheck"] = True
    # Bounded so a stuck store fails the webhook instead of hanging it.
    client = AsyncIOMotorClient(
        uri,
        tz_aware=True,
        serverSelectionTimeoutMS=settings.mongodb_timeout_ms,
        connectTimeoutMS=settings.mongodb_timeout_ms,
        socketTimeoutMS=settings.mongodb_timeout_ms,
        **kwargs,
    )
    database = client[db_name or settings.mongodb_db_name]
    await init_beanie(database=database, document_models=DOCUMENT_MODELS)
    _client = client
    return client


def close_db() -> None:
    global _client
    if _client is not None:
        _client.close()
        _client = None
