# app/services/transaction_service.py

from sqlmodel import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundError
from app.models.marketplace import Profile, Service, Transaction


async def get_transaction(session: AsyncSession, transaction_id: int) -> Transaction:
    transaction = await session.get(Transaction, transaction_id)
    if not transaction:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return transaction


async def get_service(session: AsyncSession, service_id: int) -> Service:
    service = await session.get(Service, service_id)
    if not service:
        raise NotFoundError(f"Service {service_id} not found")
    return service


async def get_profile(session: AsyncSession, user_id: int) -> Profile:
    result = await session.execute(select(Profile).where(Profile.user_id == user_id))
    profile = result.scalars().first()
    if not profile:
        raise NotFoundError(f"Profile for user {user_id} not found")
    return profile
