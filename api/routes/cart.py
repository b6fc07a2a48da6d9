"""
购物车API路由
"""
from fastapi import APIRouter, Depends

from api.dependencies import Principal, get_cart_service, get_current_principal
from application.dtos.api import CartItemAddDTO, CartItemUpdateDTO, CartResponseDTO
from application.services.cart_service import CartService
from core.response import Response as ApiResponse, success_response

router = APIRouter(
    prefix="/cart",
    tags=["购物车"]
)


@router.get("", summary="获取购物车", response_model=ApiResponse[CartResponseDTO])
async def get_cart(
    principal: Principal = Depends(get_current_principal),
    service: CartService = Depends(get_cart_service),
):
    cart = await service.get_cart(principal.account_id)
    return success_response(data=CartResponseDTO.from_entity(cart))


@router.post("/items", summary="加入购物车", response_model=ApiResponse[CartResponseDTO])
async def add_item(
    body: CartItemAddDTO,
    principal: Principal = Depends(get_current_principal),
    service: CartService = Depends(get_cart_service),
):
    """加入商品；数量超过库存时按可用库存截断，库存在此时预留"""
    cart = await service.add(principal.account_id, body.product_id, body.quantity)
    return success_response(data=CartResponseDTO.from_entity(cart), message="Item added")


@router.patch("/items/{product_id}", summary="修改数量", response_model=ApiResponse[CartResponseDTO])
async def update_item(
    product_id: int,
    body: CartItemUpdateDTO,
    principal: Principal = Depends(get_current_principal),
    service: CartService = Depends(get_cart_service),
):
    cart = await service.update(principal.account_id, product_id, body.quantity)
    return success_response(data=CartResponseDTO.from_entity(cart), message="Cart updated")


@router.delete("/items/{product_id}", summary="移除商品", response_model=ApiResponse[CartResponseDTO])
async def remove_item(
    product_id: int,
    principal: Principal = Depends(get_current_principal),
    service: CartService = Depends(get_cart_service),
):
    await service.remove(principal.account_id, product_id)
    cart = await service.get_cart(principal.account_id)
    return success_response(data=CartResponseDTO.from_entity(cart), message="Item removed")


@router.delete("", summary="清空购物车", response_model=ApiResponse[CartResponseDTO])
async def empty_cart(
    principal: Principal = Depends(get_current_principal),
    service: CartService = Depends(get_cart_service),
):
    await service.empty(principal.account_id)
    cart = await service.get_cart(principal.account_id)
    return success_response(data=CartResponseDTO.from_entity(cart), message="Cart emptied")
