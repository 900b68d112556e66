"""
Route generator - generates the generic FastAPI routes.

Routes are not generated per entity: ``{entity}`` is a path parameter
resolved by the CRUD service at request time.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Body, Request

from manifest_back.errors import ForbiddenError, NotFoundError
from manifest_back.runtime.auth import AdminResolver
from manifest_back.runtime.crud_service import CrudService
from manifest_back.specs.entity import AppManifest, EntityManifest

SINGLE_ITEM_ID = 1


def query_params_of(request: Request) -> dict[str, str]:
    """Query params as a dict; for a repeated key the last value wins."""
    return dict(request.query_params.multi_items())


def _check_access(entity: EntityManifest, admin: AdminResolver, request: Request) -> None:
    if entity.admin_only and not admin.is_request_user_admin(request):
        raise ForbiddenError(f"Entity '{entity.slug}' is restricted to admins")


def _collection_entity(
    service: CrudService, entity_slug: str, admin: AdminResolver, request: Request
) -> EntityManifest:
    entity = service.get_entity(entity_slug)
    if entity.single:
        raise NotFoundError(f"Entity '{entity_slug}' is a single, not a collection")
    _check_access(entity, admin, request)
    return entity


def _single_entity(
    service: CrudService, entity_slug: str, admin: AdminResolver, request: Request
) -> EntityManifest:
    entity = service.get_entity(entity_slug)
    if not entity.single:
        raise NotFoundError(f"Entity '{entity_slug}' is a collection, not a single")
    _check_access(entity, admin, request)
    return entity


# =============================================================================
# Route Handler Factory
# =============================================================================


def create_list_handler(service: CrudService, admin: AdminResolver) -> Callable[..., Any]:
    """Create a handler for list operations."""

    async def handler(entity: str, request: Request) -> Any:
        _collection_entity(service, entity, admin, request)
        paginator = await service.find_all(
            entity,
            query_params_of(request),
            full_version=admin.is_request_user_admin(request),
        )
        return paginator.model_dump(by_alias=True)

    return handler


def create_select_options_handler(
    service: CrudService, admin: AdminResolver
) -> Callable[..., Any]:
    """Create a handler for select options."""

    async def handler(entity: str, request: Request) -> Any:
        _collection_entity(service, entity, admin, request)
        return await service.find_select_options(entity, query_params_of(request))

    return handler


def create_read_handler(service: CrudService, admin: AdminResolver) -> Callable[..., Any]:
    """Create a handler for read operations."""

    async def handler(entity: str, id: int, request: Request) -> Any:
        _collection_entity(service, entity, admin, request)
        return await service.find_one(
            entity,
            id,
            query_params_of(request),
            full_version=admin.is_request_user_admin(request),
        )

    return handler


def create_create_handler(service: CrudService, admin: AdminResolver) -> Callable[..., Any]:
    """Create a handler for create operations."""

    async def handler(
        entity: str, request: Request, dto: dict[str, Any] = Body(...)
    ) -> Any:
        _collection_entity(service, entity, admin, request)
        return await service.store(
            entity, dto, full_version=admin.is_request_user_admin(request)
        )

    return handler


def create_update_handler(service: CrudService, admin: AdminResolver) -> Callable[..., Any]:
    """Create a handler for update operations."""

    async def handler(
        entity: str, id: int, request: Request, dto: dict[str, Any] = Body(...)
    ) -> Any:
        _collection_entity(service, entity, admin, request)
        return await service.update(
            entity, id, dto, full_version=admin.is_request_user_admin(request)
        )

    return handler


def create_delete_handler(service: CrudService, admin: AdminResolver) -> Callable[..., Any]:
    """Create a handler for delete operations."""

    async def handler(entity: str, id: int, request: Request) -> dict[str, int]:
        _collection_entity(service, entity, admin, request)
        return await service.delete(entity, id)

    return handler


# =============================================================================
# Routers
# =============================================================================


def generate_collection_routes(service: CrudService, admin: AdminResolver) -> APIRouter:
    """
    Generate the ``/collections/{entity}`` routes.

    Args:
        service: CRUD service
        admin: Admin resolver (hidden properties for admins only)

    Returns:
        APIRouter with list, select options, read, create, update and delete
    """
    router = APIRouter(prefix="/collections", tags=["Collections"])
    # select-options goes before /{id}
    router.add_api_route(
        "/{entity}/select-options",
        create_select_options_handler(service, admin),
        methods=["GET"],
        summary="List items as select options",
    )
    router.add_api_route(
        "/{entity}", create_list_handler(service, admin), methods=["GET"], summary="List items"
    )
    router.add_api_route(
        "/{entity}/{id}", create_read_handler(service, admin), methods=["GET"], summary="Get item"
    )
    router.add_api_route(
        "/{entity}",
        create_create_handler(service, admin),
        methods=["POST"],
        status_code=201,
        summary="Create item",
    )
    router.add_api_route(
        "/{entity}/{id}",
        create_update_handler(service, admin),
        methods=["PUT"],
        summary="Update item",
    )
    router.add_api_route(
        "/{entity}/{id}",
        create_delete_handler(service, admin),
        methods=["DELETE"],
        summary="Delete item",
    )
    return router


def generate_single_routes(service: CrudService, admin: AdminResolver) -> APIRouter:
    """
    Generate the ``/singles/{entity}`` routes.

    A single entity has exactly one row (id 1), created empty on first access.
    """
    router = APIRouter(prefix="/singles", tags=["Singles"])

    async def ensure_single(entity: str, request: Request) -> None:
        _single_entity(service, entity, admin, request)
        try:
            await service.find_one(entity, SINGLE_ITEM_ID)
        except NotFoundError:
            await service.store_empty(entity, SINGLE_ITEM_ID)

    @router.get("/{entity}", summary="Get single")
    async def get_single(entity: str, request: Request) -> Any:
        await ensure_single(entity, request)
        return await service.find_one(
            entity, SINGLE_ITEM_ID, full_version=admin.is_request_user_admin(request)
        )

    @router.put("/{entity}", summary="Replace single")
    async def put_single(
        entity: str, request: Request, dto: dict[str, Any] = Body(...)
    ) -> Any:
        await ensure_single(entity, request)
        return await service.update(
            entity, SINGLE_ITEM_ID, dto, full_version=admin.is_request_user_admin(request)
        )

    @router.patch("/{entity}", summary="Update single")
    async def patch_single(
        entity: str, request: Request, dto: dict[str, Any] = Body(...)
    ) -> Any:
        await ensure_single(entity, request)
        return await service.update(
            entity,
            SINGLE_ITEM_ID,
            dto,
            partial_replacement=True,
            full_version=admin.is_request_user_admin(request),
        )

    return router


def generate_manifest_routes(app: AppManifest, admin: AdminResolver) -> APIRouter:
    """
    Generate the ``/manifest`` routes the admin UI is driven by.

    Non-admin callers get the public version (no hidden properties).
    """
    router = APIRouter(prefix="/manifest", tags=["Manifest"])

    def manifest_for(request: Request) -> AppManifest:
        return app if admin.is_request_user_admin(request) else app.public_version()

    @router.get("", summary="Get app manifest")
    async def get_manifest(request: Request) -> dict[str, Any]:
        return manifest_for(request).model_dump(by_alias=True, mode="json")

    @router.get("/entities/{slug}", summary="Get entity manifest")
    async def get_entity_manifest(slug: str, request: Request) -> dict[str, Any]:
        entity = manifest_for(request).get_entity(slug)
        if entity is None:
            raise NotFoundError(f"Entity '{slug}' not found")
        return entity.model_dump(by_alias=True, mode="json")

    return router
