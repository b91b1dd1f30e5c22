"""Notification endpoints guarded by the sanitize/permission/rate pipeline."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from abuseguard import container
from abuseguard.domain.guard.schemas import (
	CreateNotificationRequest,
	MarkReadResponse,
	NotificationCreated,
)
from abuseguard.domain.guard.service import GuardService
from abuseguard.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=NotificationCreated)
async def create_notification(
	payload: CreateNotificationRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GuardService = Depends(container.get_service),
) -> NotificationCreated:
	notification = await service.create_notification(
		auth_user.id,
		payload.target_user_id,
		payload.type,
		payload.message,
		payload.metadata,
		ip=auth_user.ip,
		user_agent=auth_user.user_agent,
	)
	return NotificationCreated(notification_id=notification.id)


@router.post("/{notification_id}/read", response_model=MarkReadResponse)
async def mark_notification_read(
	notification_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GuardService = Depends(container.get_service),
) -> MarkReadResponse:
	updated = await service.mark_notification_read(auth_user.id, notification_id)
	return MarkReadResponse(updated=updated)
