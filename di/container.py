from __future__ import annotations

from dependency_injector import containers, providers

from core.settings import SETTINGS
from infra.resources import DatabaseResource, InMemoryDatabase
from memory.codec import VectorCodec
from memory.models import MemoryConfig
from memory.pipeline.context_assembler import ContextAssembler
from memory.pipeline.turn_pipeline import TurnPipeline
from memory.providers.embeddings import OpenAIEmbeddingProvider
from memory.providers.generator import ChatOpenAIGenerator
from memory.stores.in_memory import (
    InMemoryConversationRegistry,
    InMemoryMessageStore,
    InMemorySimilarityIndex,
)
from memory.stores.postgres import (
    PgConversationRegistry,
    PgMessageStore,
    PgSimilarityIndex,
)


class InfrastructureContainer(containers.DeclarativeContainer):
    config = providers.Configuration()

    # Database
    database = providers.Resource(
        DatabaseResource,
        database_url=str(SETTINGS.DATABASE.DATABASE_URL),
    )

    # In-process tables for MEMORY_BACKEND=memory
    in_memory_database = providers.Singleton(InMemoryDatabase)


class MemoryContainer(containers.DeclarativeContainer):
    """Conversational memory stores, providers and pipeline."""

    infrastructure = providers.DependenciesContainer()

    backend = providers.Object(SETTINGS.MEMORY.MEMORY_BACKEND)
    config = providers.Singleton(MemoryConfig.from_settings, SETTINGS.MEMORY)
    codec = providers.Singleton(
        VectorCodec, dimension=SETTINGS.MEMORY.EMBEDDING_DIMENSION
    )

    message_store = providers.Selector(
        backend,
        postgres=providers.Singleton(
            PgMessageStore, database=infrastructure.database, codec=codec
        ),
        memory=providers.Singleton(
            InMemoryMessageStore, database=infrastructure.in_memory_database
        ),
    )

    registry = providers.Selector(
        backend,
        postgres=providers.Singleton(
            PgConversationRegistry, database=infrastructure.database
        ),
        memory=providers.Singleton(
            InMemoryConversationRegistry, database=infrastructure.in_memory_database
        ),
    )

    similarity_index = providers.Selector(
        backend,
        postgres=providers.Singleton(
            PgSimilarityIndex, database=infrastructure.database, codec=codec
        ),
        memory=providers.Singleton(
            InMemorySimilarityIndex,
            database=infrastructure.in_memory_database,
            dimension=SETTINGS.MEMORY.EMBEDDING_DIMENSION,
        ),
    )

    # External collaborators
    embedding_provider = providers.Singleton(
        OpenAIEmbeddingProvider,
        api_key=SETTINGS.OPENAI.OPENAI_API_KEY.get_secret_value(),
        model=SETTINGS.OPENAI.EMBEDDING_MODEL,
        dimensions=SETTINGS.MEMORY.EMBEDDING_DIMENSION,
        max_retries=SETTINGS.OPENAI.EMBEDDING_MAX_RETRIES,
        retry_delay=SETTINGS.OPENAI.EMBEDDING_RETRY_DELAY,
    )

    generator = providers.Singleton(
        ChatOpenAIGenerator,
        api_key=SETTINGS.OPENAI.OPENAI_API_KEY.get_secret_value(),
        model=SETTINGS.OPENAI.CHAT_MODEL,
        temperature=SETTINGS.OPENAI.CHAT_TEMPERATURE,
    )

    assembler = providers.Factory(
        ContextAssembler,
        message_store=message_store,
        similarity_index=similarity_index,
        config=config,
    )

    turn_pipeline = providers.Factory(
        TurnPipeline,
        message_store=message_store,
        registry=registry,
        assembler=assembler,
        embedding_provider=embedding_provider,
        generator=generator,
        embedding_dimension=SETTINGS.MEMORY.EMBEDDING_DIMENSION,
    )


class ControllerContainer(containers.DeclarativeContainer):
    """Controller-specific dependencies."""

    memory = providers.DependenciesContainer()

    # Controllers
    chat_controller = providers.Factory(
        "api.features.chat.controller.ChatController",
        turn_pipeline=memory.turn_pipeline,
    )

    conversation_controller = providers.Factory(
        "api.features.conversation.controller.ConversationController",
        registry=memory.registry,
        message_store=memory.message_store,
        turn_pipeline=memory.turn_pipeline,
    )


class ApplicationContainer(containers.DeclarativeContainer):
    """Main application container composing all sub-containers."""

    wiring_config = containers.WiringConfiguration(
        modules=[
            "api.features.chat.router",
            "api.features.conversation.router",
        ]
    )

    infrastructure = providers.Container(InfrastructureContainer)
    memory = providers.Container(MemoryContainer, infrastructure=infrastructure)
    controllers = providers.Container(ControllerContainer, memory=memory)
