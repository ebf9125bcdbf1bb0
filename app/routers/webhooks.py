import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.core.errors import DuplicateTransaction
from app.db.session import get_sessionmaker
from app.schemas.payment import DepositNotification, PaymentOut, WithdrawalOutcome
from app.services import payment_service

logger = logging.getLogger(__name__)

# 网关回调，不鉴权；重复推送按成功应答
router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/deposit")
async def deposit(note: DepositNotification, factory: async_sessionmaker = Depends(get_sessionmaker)):
    try:
        res = await payment_service.process_deposit(factory, note)
    except DuplicateTransaction as e:
        logger.info("duplicate deposit notification %s/%s: %s", note.gateway_id, note.external_id, e.message)
        return {"ok": True, "duplicate": True}
    return {"ok": True, "duplicate": False, **res.model_dump(mode="json")}


@router.post("/withdrawal")
async def withdrawal(outcome: WithdrawalOutcome, factory: async_sessionmaker = Depends(get_sessionmaker)):
    try:
        tx = await payment_service.resolve_withdrawal(factory, outcome.gateway_id, outcome.external_id, outcome.status)
    except DuplicateTransaction as e:
        logger.info("duplicate withdrawal outcome %s/%s: %s", outcome.gateway_id, outcome.external_id, e.message)
        return {"ok": True, "duplicate": True}
    return {"ok": True, "duplicate": False, "transaction": PaymentOut.model_validate(tx).model_dump(mode="json")}
