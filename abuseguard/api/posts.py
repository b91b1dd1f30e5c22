"""Post and comment authoring with sanitization and per-actor budgets."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from abuseguard import container
from abuseguard.domain.guard.schemas import CommentOut, CreateCommentRequest, CreatePostRequest, PostOut
from abuseguard.domain.guard.service import GuardService
from abuseguard.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(prefix="/posts", tags=["posts"])


@router.post("", status_code=status.HTTP_201_CREATED, response_model=PostOut)
async def create_post(
	payload: CreatePostRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GuardService = Depends(container.get_service),
) -> PostOut:
	post = await service.create_post(
		auth_user.id,
		payload.content,
		title=payload.title,
		post_type=payload.type,
		ip=auth_user.ip,
		user_agent=auth_user.user_agent,
	)
	return PostOut.from_domain(post)


@router.post("/{post_id}/comments", status_code=status.HTTP_201_CREATED, response_model=CommentOut)
async def create_comment(
	post_id: str,
	payload: CreateCommentRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: GuardService = Depends(container.get_service),
) -> CommentOut:
	comment = await service.create_comment(
		auth_user.id,
		post_id,
		payload.content,
		ip=auth_user.ip,
		user_agent=auth_user.user_agent,
	)
	return CommentOut.from_domain(comment)
