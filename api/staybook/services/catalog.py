"""Resource catalog: the declared capacity of every bookable resource.

All functions take the caller's session and never commit.
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from staybook.models.resource import Resource, ResourceType
from staybook.schemas import ResourceCreate

logger = logging.getLogger(__name__)


async def get_resource(
    db: AsyncSession,
    resource_id: str,
    resource_type: ResourceType,
    for_update: bool = False,
) -> Resource | None:
    query = select(Resource).where(Resource.resource_id == resource_id, Resource.resource_type == resource_type)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def register_resource(db: AsyncSession, resource_in: ResourceCreate) -> Resource:
    """Create a catalog entry, or update the existing one with the same key."""
    resource = await get_resource(db, resource_in.resource_id, resource_in.resource_type, for_update=True)
    if resource is None:
        resource = Resource(**resource_in.model_dump(), config={})
        db.add(resource)
    else:
        for name, value in resource_in.model_dump(exclude={"resource_id", "resource_type"}).items():
            setattr(resource, name, value)
    await db.flush()
    logger.info("Catalog entry %s:%s capacity=%s", resource.resource_type.value, resource.resource_id, resource.capacity)
    return resource


async def lock_or_register(
    db: AsyncSession,
    resource_id: str,
    resource_type: ResourceType,
    capacity: int,
    name: str | None = None,
) -> tuple[Resource, bool]:
    """Return the row-locked catalog entry, registering it first if unknown.

    The locked row is what serialises concurrent allocations for the same
    resource across processes. Returns (resource, created).

    If another writer registers the same key first, the flush raises
    IntegrityError and the caller's transaction must be retried.
    """
    resource = await get_resource(db, resource_id, resource_type, for_update=True)
    if resource is not None:
        return resource, False

    resource = Resource(
        resource_id=resource_id,
        resource_type=resource_type,
        name=name,
        capacity=capacity,
        config={},
    )
    db.add(resource)
    await db.flush()
    logger.info("Registered %s:%s with capacity %s on first allocation", resource_type.value, resource_id, capacity)
    return resource, True


async def list_catalog(
    db: AsyncSession,
    resource_type: ResourceType | None = None,
    category: str | None = None,
    parent_ref: str | None = None,
    active_only: bool = True,
) -> list[Resource]:
    query = select(Resource)
    if resource_type is not None:
        query = query.where(Resource.resource_type == resource_type)
    if category is not None:
        query = query.where(Resource.category == category)
    if parent_ref is not None:
        query = query.where(Resource.parent_ref == parent_ref)
    if active_only:
        query = query.where(Resource.is_active.is_(True))
    result = await db.execute(query.order_by(Resource.resource_type, Resource.resource_id))
    return list(result.scalars().all())


async def deactivate_resource(db: AsyncSession, resource_id: str, resource_type: ResourceType) -> Resource | None:
    resource = await get_resource(db, resource_id, resource_type, for_update=True)
    if resource is None:
        return None
    resource.is_active = False
    await db.flush()
    return resource
