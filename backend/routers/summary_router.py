from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from auth import require_api_key
from errors import InvalidInputError, UpstreamError
from wallet_summary import WalletSummaryService


class WalletSummaryRequest(BaseModel):
    """Request body for /api/wallet_summary"""
    walletAddress: Optional[str] = None


def create_summary_router(*, summary_service: WalletSummaryService) -> APIRouter:
    router = APIRouter()

    @router.post("/api/wallet_summary", dependencies=[Depends(require_api_key)])
    def wallet_summary(body: WalletSummaryRequest):
        """Portfolio value, holdings and last-month USD flows for a wallet."""
        try:
            report = summary_service.build_summary(body.walletAddress)
        except InvalidInputError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except UpstreamError as e:
            print(f"[Summary] Upstream failure for {body.walletAddress}: {e}")
            raise HTTPException(status_code=502, detail="Failed to fetch data")
        return report.to_dict()

    return router
