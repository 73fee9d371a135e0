"""Group CRUD operations"""
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from app.core.result import ErrorCode, Result, fail, ok
from app.enums import GroupStatus
from app.models import Group


def get_group(*, session: Session, group_id: str) -> Result[Group]:
    """
    Group by id, whatever its status

    Returns:
        the group, GROUP_NOT_FOUND or STORAGE_ERROR
    """
    try:
        group = session.get(Group, group_id)
    except SQLAlchemyError as exc:
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    if not group:
        return fail(ErrorCode.GROUP_NOT_FOUND, f"Group {group_id} not found")
    return ok(group)


def get_active_group_by_plan_id(*, session: Session, plan_id: str) -> Result[Group]:
    """Group sold through the given Mercado Pago plan, only if it is active."""
    statement = select(Group).where(
        Group.provider_plan_id == plan_id, Group.status == GroupStatus.active.value
    )
    try:
        group = session.exec(statement).first()
    except SQLAlchemyError as exc:
        return fail(ErrorCode.STORAGE_ERROR, str(exc))
    if not group:
        return fail(ErrorCode.GROUP_NOT_FOUND, f"No active group for plan {plan_id}")
    return ok(group)


def create_group(*, session: Session, group: Group) -> Group:
    """Insert a group row and return it refreshed."""
    session.add(group)
    session.commit()
    session.refresh(group)
    return group
