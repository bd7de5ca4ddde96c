from functools import lru_cache

from tinydb import TinyDB

from ledgerbot.agent.orchestrator import Orchestrator
from ledgerbot.config import get_settings
from ledgerbot.db.memory import WorkingMemoryStore
from ledgerbot.db.repository import ProjectRepository, TransactionRepository
from ledgerbot.db.sessions import SessionStore
from ledgerbot.llm.engine import DecisionEngine
from ledgerbot.llm.parser import TransactionParser
from ledgerbot.tools.registry import build_registry
from ledgerbot.tools.resolver import TransactionResolver


@lru_cache
def get_db() -> TinyDB:
    return TinyDB(get_settings().db_path)


@lru_cache
def get_sessions() -> SessionStore:
    return SessionStore(get_db())


@lru_cache
def get_memory() -> WorkingMemoryStore:
    return WorkingMemoryStore(get_db())


@lru_cache
def get_transactions() -> TransactionRepository:
    return TransactionRepository(get_db())


@lru_cache
def get_projects() -> ProjectRepository:
    return ProjectRepository(get_db(), default_currency=get_settings().default_currency)


@lru_cache
def get_orchestrator() -> Orchestrator:
    settings = get_settings()
    resolver = TransactionResolver(get_transactions(), get_memory())
    parser = TransactionParser(
        api_key=settings.openrouter_api_key,
        model=settings.llm_model,
        base_url=settings.openrouter_base_url,
    )
    engine = DecisionEngine(
        api_key=settings.openrouter_api_key,
        model=settings.llm_model,
        base_url=settings.openrouter_base_url,
    )
    registry = build_registry(resolver, parser, settings.clarification_threshold)
    return Orchestrator(
        sessions=get_sessions(),
        memory=get_memory(),
        engine=engine,
        registry=registry,
        resolver=resolver,
        projects=get_projects(),
    )
