# ============================================================
# DBSage - Database AI Assistant
# core/session.py - Component Wiring
# ============================================================

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from config import OpenAIConfig, AppConfig
from core.commands import CommandProcessor
from core.confirmation import ConfirmationMediator
from core.errors import ConnectionNotFoundError
from core.guidance import Guidance, derive_guidance
from core.llm_client import LLMClient
from core.orchestrator import Orchestrator
from core.prompts import build_system_prompt
from core.registry import ConnectionRegistry
from core.tools import ToolCatalog
from database.providers import ProviderManager


@dataclass
class Session:
    """Everything one UI needs: registry, commands and the conversation loop."""
    openai: OpenAIConfig
    app: AppConfig
    registry: ConnectionRegistry
    catalog: ToolCatalog
    mediator: ConfirmationMediator
    orchestrator: Orchestrator
    commands: CommandProcessor

    @classmethod
    def build(
        cls,
        openai: OpenAIConfig,
        app: AppConfig,
        llm: Optional[LLMClient] = None,
        providers: Optional[ProviderManager] = None,
    ) -> "Session":
        registry = ConnectionRegistry(app.get_connections_file(), providers=providers)
        catalog = ToolCatalog()
        mediator = ConfirmationMediator(catalog)

        def system_prompt() -> str:
            name = registry.current_name()
            db_type = None
            if name:
                try:
                    db_type = registry.get(name).type.value
                except ConnectionNotFoundError:
                    name = None
            return build_system_prompt(name, db_type)

        orchestrator = Orchestrator(
            llm=llm or LLMClient(openai),
            catalog=catalog,
            handle_provider=registry.current_or_none,
            mediator=mediator,
            system_prompt=system_prompt,
        )
        logger.info(f"Session ready (model {openai.model}, {len(registry.names())} connection(s))")
        return cls(
            openai=openai,
            app=app,
            registry=registry,
            catalog=catalog,
            mediator=mediator,
            orchestrator=orchestrator,
            commands=CommandProcessor(registry),
        )

    def guidance(self) -> Optional[Guidance]:
        return derive_guidance(
            api_key_present=self.openai.has_api_key,
            has_connection=self.registry.has_connections(),
            transcript_empty=not self.orchestrator.transcript,
        )

    def shutdown(self):
        self.orchestrator.cancel()
        self.registry.close_all()
        logger.info("Session closed")
