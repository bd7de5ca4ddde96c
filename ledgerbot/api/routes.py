from fastapi import APIRouter, Depends, HTTPException
from loguru import logger

from ledgerbot.agent.callbacks import parse_callback
from ledgerbot.agent.orchestrator import Orchestrator
from ledgerbot.db.memory import WorkingMemoryStore
from ledgerbot.db.repository import TransactionRepository
from ledgerbot.db.sessions import SessionStore
from ledgerbot.deps import get_memory, get_orchestrator, get_sessions, get_transactions
from ledgerbot.errors import InvalidArguments
from ledgerbot.models.conversation import WorkingMemory
from ledgerbot.models.schemas import (
    CallbackRequest,
    MessageRequest,
    Reply,
    SweepResponse,
    Transaction,
    TransactionStatus,
)

router = APIRouter()


@router.post("/messages", response_model=Reply)
async def post_message(
    request: MessageRequest, orchestrator: Orchestrator = Depends(get_orchestrator)
):
    return await orchestrator.handle_message(
        request.text, request.user_id, request.chat_id, request.display_name
    )


@router.post("/callbacks", response_model=Reply)
async def post_callback(
    request: CallbackRequest, orchestrator: Orchestrator = Depends(get_orchestrator)
):
    try:
        action = parse_callback(request.data)
    except InvalidArguments as e:
        raise HTTPException(status_code=400, detail=str(e))
    return await orchestrator.handle_callback(
        action, request.user_id, request.chat_id, request.display_name
    )


@router.get("/transactions", response_model=list[Transaction])
async def list_transactions(
    project_id: str | None = None,
    status: TransactionStatus | None = None,
    transactions: TransactionRepository = Depends(get_transactions),
):
    return await transactions.get_all(project_id=project_id, status=status)


@router.get("/transactions/{transaction_id}", response_model=Transaction)
async def get_transaction(
    transaction_id: str, transactions: TransactionRepository = Depends(get_transactions)
):
    transaction = await transactions.get(transaction_id)
    if transaction is None:
        raise HTTPException(status_code=404, detail="Transaction not found")
    return transaction


@router.get("/memory/{user_id}/{chat_id}", response_model=WorkingMemory)
async def get_working_memory(
    user_id: int, chat_id: int, memory: WorkingMemoryStore = Depends(get_memory)
):
    return await memory.get(user_id, chat_id)


@router.post("/maintenance/sweep", response_model=SweepResponse)
async def sweep(
    sessions: SessionStore = Depends(get_sessions),
    memory: WorkingMemoryStore = Depends(get_memory),
):
    result = SweepResponse(
        sessions=await sessions.sweep_expired(),
        working_memory=await memory.sweep_expired(),
    )
    logger.info("Swept {} sessions, {} memory rows", result.sessions, result.working_memory)
    return result
