"""
钱包API路由
"""
from fastapi import APIRouter, Depends

from api.dependencies import Principal, get_current_principal, get_wallet_service
from application.dtos.api import WalletResponseDTO
from application.services.order_query_service import WalletService
from core.response import Response as ApiResponse, success_response

router = APIRouter(
    prefix="/wallet",
    tags=["钱包"]
)


@router.get("", summary="钱包余额与流水", response_model=ApiResponse[WalletResponseDTO])
async def get_wallet(
    principal: Principal = Depends(get_current_principal),
    service: WalletService = Depends(get_wallet_service),
):
    balance, entries = await service.summary(principal.account_id)
    return success_response(data=WalletResponseDTO.from_entities(balance, entries))
