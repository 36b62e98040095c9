# ============================================================
# DBSage - Database AI Assistant
# database/providers.py - Provider Registry
# ============================================================

from typing import Dict, List, Optional

from loguru import logger

from core.errors import DatabaseConnectionError
from core.models import ConnectionConfig
from database.base import DatabaseInterface, DatabaseProvider
from database.mysql import MySQLProvider
from database.postgres import PostgreSQLProvider


class ProviderManager:
    """Maps a database type to the provider that can open it."""

    def __init__(self, providers: Optional[List[DatabaseProvider]] = None):
        self._providers: Dict[str, DatabaseProvider] = {}
        for provider in providers if providers is not None else [PostgreSQLProvider(), MySQLProvider()]:
            self.register(provider)

    def register(self, provider: DatabaseProvider):
        self._providers[provider.db_type] = provider

    def supported_types(self) -> List[str]:
        return sorted(self._providers)

    def get(self, db_type: str) -> DatabaseProvider:
        key = getattr(db_type, "value", db_type)
        provider = self._providers.get(key)
        if provider is None:
            raise DatabaseConnectionError(
                f"unsupported database type: {key} (supported: {', '.join(self.supported_types())})"
            )
        return provider

    def validate_config(self, cfg: ConnectionConfig):
        self.get(cfg.type).validate_config(cfg)

    def create_connection(self, cfg: ConnectionConfig) -> DatabaseInterface:
        provider = self.get(cfg.type)
        logger.debug(f"Opening {cfg.type.value} connection '{cfg.name}' to {cfg.address}")
        return provider.create_connection(cfg)
