"""
Product attribute API Endpoints
Attributes (e.g. Color: Red/Blue) and their assignment to products
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.api.deps import get_attribute_service
from app.core.auth import Permission, StoreContext, require_permission
from app.core.responses import Pagination, paginated, pagination_params, success
from app.domain.attribute import (
    AttributeCreate, AttributeUpdate, AttributeValuesChange, ProductAttributeAssign,
)
from app.services.attribute_service import AttributeService

router = APIRouter()

view_attributes = require_permission(Permission.PRODUCTS_VIEW, Permission.ATTRIBUTES_MANAGE)
manage_attributes = require_permission(Permission.ATTRIBUTES_MANAGE)


@router.get("")
async def list_attributes(
    search: Optional[str] = Query(None),
    pagination: Pagination = Depends(pagination_params),
    ctx: StoreContext = Depends(view_attributes),
    service: AttributeService = Depends(get_attribute_service)
):
    attributes, total = service.list(ctx.require_store(), search=search,
                                     limit=pagination.limit, offset=pagination.offset)
    return paginated([attribute.to_dict() for attribute in attributes], total, pagination)


@router.post("", status_code=201)
async def create_attribute(
    body: AttributeCreate,
    ctx: StoreContext = Depends(manage_attributes),
    service: AttributeService = Depends(get_attribute_service)
):
    attribute = service.create(ctx.require_store(), body, user=ctx.user)
    return success(attribute.to_dict(), message="Attribute created")


@router.get("/{attribute_id}")
async def get_attribute(
    attribute_id: int,
    ctx: StoreContext = Depends(view_attributes),
    service: AttributeService = Depends(get_attribute_service)
):
    return success(service.get(ctx.require_store(), attribute_id).to_dict())


@router.put("/{attribute_id}")
async def update_attribute(
    attribute_id: int,
    body: AttributeUpdate,
    ctx: StoreContext = Depends(manage_attributes),
    service: AttributeService = Depends(get_attribute_service)
):
    attribute = service.update(ctx.require_store(), attribute_id, body, user=ctx.user)
    return success(attribute.to_dict(), message="Attribute updated")


@router.delete("/{attribute_id}")
async def delete_attribute(
    attribute_id: int,
    ctx: StoreContext = Depends(manage_attributes),
    service: AttributeService = Depends(get_attribute_service)
):
    service.delete(ctx.require_store(), attribute_id, user=ctx.user)
    return success(None, message="Attribute deleted")


@router.post("/{attribute_id}/values")
async def add_attribute_values(
    attribute_id: int,
    body: AttributeValuesChange,
    ctx: StoreContext = Depends(manage_attributes),
    service: AttributeService = Depends(get_attribute_service)
):
    attribute = service.add_values(ctx.require_store(), attribute_id, body.values, user=ctx.user)
    return success(attribute.to_dict(), message="Values added")


@router.delete("/{attribute_id}/values")
async def remove_attribute_values(
    attribute_id: int,
    body: AttributeValuesChange,
    ctx: StoreContext = Depends(manage_attributes),
    service: AttributeService = Depends(get_attribute_service)
):
    attribute = service.remove_values(ctx.require_store(), attribute_id, body.values, user=ctx.user)
    return success(attribute.to_dict(), message="Values removed")


@router.post("/{attribute_id}/products")
async def assign_attribute_to_product(
    attribute_id: int,
    body: ProductAttributeAssign,
    ctx: StoreContext = Depends(manage_attributes),
    service: AttributeService = Depends(get_attribute_service)
):
    service.assign_to_product(ctx.require_store(), attribute_id, body.product_id, body.value, user=ctx.user)
    return success({"attributeId": attribute_id, "productId": body.product_id, "value": body.value},
                   message="Attribute assigned")
