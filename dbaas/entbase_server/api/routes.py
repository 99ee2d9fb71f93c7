"""
API routes for the EntBase HTTP gateway.

Provides REST endpoints that wrap EntityClient: schema retrieval and
instance CRUD for one tenant per request.

Filters are passed as repeated query parameters:
    ?filter=status:active&filter=company:<id>&mode=company:all
"""

import logging
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field

from sdk.entbase_sdk.client import EntityClient, QueryParams
from sdk.entbase_sdk.config import ClientConfig
from sdk.entbase_sdk.errors import ValidationError
from sdk.entbase_sdk.transform import InstancePayload

from ..storage import actor_scope

logger = logging.getLogger(__name__)

router = APIRouter(tags=["EntBase"])


# --- Request/Response Models ---


class InstanceWriteRequest(BaseModel):
    """Request to create or update an instance."""

    data: Dict[str, Any] = Field(default_factory=dict, description="Values for the data blob")
    relations: Optional[Dict[str, Union[str, List[str], None]]] = Field(
        None, description="Relation field name -> target id or list of target ids"
    )


class PaginationResponse(BaseModel):
    """Page metadata."""

    page: int
    limit: int
    total: int
    total_pages: int
    has_previous_page: bool
    has_next_page: bool


class InstancePageResponse(BaseModel):
    """One page of flat records."""

    data: List[Dict[str, Any]]
    pagination: PaginationResponse


class SchemaResponse(BaseModel):
    """Entity type with its ordered fields."""

    id: str
    name: str
    slug: Optional[str] = None
    tenant_id: str
    table_name: Optional[str] = None
    description: Optional[str] = None
    enable_pagination: bool = True
    page_size: int = 20
    enable_filters: bool = True
    fields: List[Dict[str, Any]]


# --- Dependencies ---


def get_tenant_id(request: Request, x_tenant_id: Optional[str] = Header(None)) -> str:
    """Tenant from the X-Tenant-ID header, else the configured default."""
    tenant = x_tenant_id or request.app.state.settings.default_tenant_id
    if not tenant:
        raise HTTPException(status_code=400, detail="X-Tenant-ID header is required")
    return tenant


def get_actor(x_actor: Optional[str] = Header(None)) -> Optional[str]:
    """Acting user from the X-Actor header, if any."""
    return x_actor


def get_client(request: Request, tenant_id: str = Depends(get_tenant_id)) -> EntityClient:
    """Shared client for the tenant."""
    config = ClientConfig(tenant_id=tenant_id, options=request.app.state.client_options)
    return request.app.state.registry.get(config)


def _parse_pairs(values: List[str], param: str) -> Dict[str, List[str]]:
    pairs: Dict[str, List[str]] = {}
    for raw in values:
        name, sep, value = raw.partition(":")
        if not sep or not name:
            raise ValidationError(param, f"expected 'field:value', got '{raw}'")
        pairs.setdefault(name, []).append(value)
    return pairs


# --- Schema Routes ---


@router.get("/schemas", response_model=List[SchemaResponse])
async def list_schemas(client: EntityClient = Depends(get_client)):
    """
    List all entity types of the tenant, ordered by name.
    """
    return [s.to_dict() for s in await client.list_schemas()]


@router.get("/schemas/{schema_id}", response_model=SchemaResponse)
async def get_schema(schema_id: str, client: EntityClient = Depends(get_client)):
    """
    Get one entity type with its fields in display order.
    """
    schema = await client.get_schema(schema_id)
    return schema.to_dict()


# --- Instance Routes ---


@router.get("/schemas/{schema_id}/instances", response_model=InstancePageResponse)
async def list_instances(
    schema_id: str,
    request: Request,
    page: int = Query(1, ge=1, description="Page number"),
    limit: Optional[int] = Query(None, ge=1, description="Page size"),
    search: Optional[str] = Query(None, description="Free-text search"),
    filters: List[str] = Query([], alias="filter", description="field:value, repeatable"),
    mode: List[str] = Query([], description="field:any|all for relation filters"),
    sort_by: str = Query("created_at", description="Sort column or data field"),
    sort_order: str = Query("desc", description="asc or desc"),
    relations_as_ids: bool = Query(False, description="Relation ids instead of records"),
    client: EntityClient = Depends(get_client),
):
    """
    List instances with filtering, search, sorting and pagination.
    """
    settings = request.app.state.settings
    limit = min(limit or settings.default_page_size, settings.max_page_size)
    modes = {name: values[-1] for name, values in _parse_pairs(mode, "mode").items()}
    params = QueryParams(
        page=page,
        limit=limit,
        search=search,
        filters=_parse_pairs(filters, "filter"),
        relation_filter_modes=modes,
        sort_by=sort_by,
        sort_order=sort_order,
        relations_as_ids=relations_as_ids,
    )
    result = await client.list_instances(schema_id, params)
    return result.to_dict()


@router.get("/schemas/{schema_id}/instances/{instance_id}")
async def get_instance(
    schema_id: str,
    instance_id: str,
    relations_as_ids: bool = Query(False, description="Relation ids instead of records"),
    client: EntityClient = Depends(get_client),
) -> Dict[str, Any]:
    """
    Get one instance with relations and attachments resolved.
    """
    return await client.get_instance(schema_id, instance_id, relations_as_ids)


@router.post("/schemas/{schema_id}/instances", status_code=201)
async def create_instance(
    schema_id: str,
    body: InstanceWriteRequest,
    client: EntityClient = Depends(get_client),
    actor: Optional[str] = Depends(get_actor),
) -> Dict[str, Any]:
    """
    Create an instance. A unique slug is derived from data.name.
    """
    with actor_scope(actor):
        return await client.create_instance(
            schema_id, InstancePayload(data=body.data, relations=body.relations)
        )


@router.patch("/schemas/{schema_id}/instances/{instance_id}")
async def update_instance(
    schema_id: str,
    instance_id: str,
    body: InstanceWriteRequest,
    client: EntityClient = Depends(get_client),
) -> Dict[str, Any]:
    """
    Merge data into an instance and replace the named relations.
    """
    return await client.update_instance(
        schema_id, instance_id, InstancePayload(data=body.data, relations=body.relations)
    )


@router.delete("/schemas/{schema_id}/instances/{instance_id}", status_code=204)
async def delete_instance(
    schema_id: str,
    instance_id: str,
    client: EntityClient = Depends(get_client),
):
    """
    Delete an instance. Its edges and attachments go with it.
    """
    await client.delete_instance(schema_id, instance_id)
    return Response(status_code=204)
