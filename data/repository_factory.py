from core.config import StoreSettings, load_settings
from data.sheets_client import SheetsClient
from data.sheets_repository import SheetsRepository


def get_repository(settings: StoreSettings = None, client: SheetsClient = None) -> SheetsRepository:
    """
    Build the repository for the configured backend.

    Call once at startup and pass the result around; nothing here is cached
    at module level.
    """
    settings = settings or load_settings()

    if settings.data_backend == "sheets":
        client = client or SheetsClient.from_settings(settings)
        return SheetsRepository(client, cache_ttl=settings.cache_ttl)

    # future:
    # if settings.data_backend == "postgres":
    #     return PostgresRepository(...)

    raise ValueError(f"Invalid DATA_BACKEND: {settings.data_backend}")
