from fastapi import APIRouter, Depends
from sqlalchemy import text

from royalty_ledger.platform.context import LedgerContext, get_ledger

router = APIRouter()


@router.get("/health")
async def health(ledger: LedgerContext = Depends(get_ledger)) -> dict:
    async with ledger.engine.connect() as connection:
        await connection.execute(text("SELECT 1"))
    return {"status": "ok"}
