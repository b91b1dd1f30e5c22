"""Admin endpoints. Authority always comes from the claims bag, never the token body."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from abuseguard import container
from abuseguard.domain.guard.schemas import (
	AdminDeleteRequest,
	AdminDeleteResponse,
	BootstrapRequest,
	PrivilegesResponse,
	RemovePrivilegesRequest,
	SetPrivilegesRequest,
	SystemNotificationCreated,
	SystemNotificationRequest,
)
from abuseguard.domain.guard.service import GuardService
from abuseguard.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/admin", tags=["admin"])


@router.post("/notifications/system", status_code=status.HTTP_201_CREATED, response_model=SystemNotificationCreated)
async def create_system_notification(
	payload: SystemNotificationRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GuardService = Depends(container.get_service),
) -> SystemNotificationCreated:
	ids = await service.create_system_notification(
		auth_user.id,
		payload.targets(),
		payload.message,
		payload.metadata,
		ip=auth_user.ip,
		user_agent=auth_user.user_agent,
	)
	return SystemNotificationCreated(notification_ids=ids)


@router.post("/notifications/delete", response_model=AdminDeleteResponse)
async def delete_notifications(
	payload: AdminDeleteRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GuardService = Depends(container.get_service),
) -> AdminDeleteResponse:
	count = await service.delete_notifications_by_admin(
		auth_user.id,
		payload.notification_ids,
		payload.reason,
		ip=auth_user.ip,
		user_agent=auth_user.user_agent,
	)
	return AdminDeleteResponse(deleted_count=count)


@router.post("/privileges", response_model=PrivilegesResponse)
async def set_admin_privileges(
	payload: SetPrivilegesRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GuardService = Depends(container.get_service),
) -> PrivilegesResponse:
	permissions = await service.set_admin_privileges(
		auth_user.id,
		payload.target_user_id,
		payload.level,
		permissions=payload.permissions,
		reason=payload.reason,
		ip=auth_user.ip,
		user_agent=auth_user.user_agent,
	)
	return PrivilegesResponse(target_user_id=payload.target_user_id, permissions=list(permissions))


@router.post("/privileges/remove", response_model=PrivilegesResponse)
async def remove_admin_privileges(
	payload: RemovePrivilegesRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GuardService = Depends(container.get_service),
) -> PrivilegesResponse:
	await service.remove_admin_privileges(
		auth_user.id,
		payload.target_user_id,
		reason=payload.reason,
		ip=auth_user.ip,
		user_agent=auth_user.user_agent,
	)
	return PrivilegesResponse(target_user_id=payload.target_user_id, permissions=[])


@router.post("/bootstrap", status_code=status.HTTP_201_CREATED, response_model=PrivilegesResponse)
async def create_initial_super_admin(
	payload: BootstrapRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GuardService = Depends(container.get_service),
) -> PrivilegesResponse:
	target = payload.target_user_id or auth_user.id
	permissions = await service.create_initial_super_admin(
		auth_user.id,
		target,
		reason=payload.reason,
		setup_key=payload.setup_key,
		ip=auth_user.ip,
		user_agent=auth_user.user_agent,
	)
	return PrivilegesResponse(target_user_id=target, permissions=list(permissions))
