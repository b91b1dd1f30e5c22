"""Pydantic schemas for the guarded RPC surface."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from abuseguard.domain.guard.models import Comment, Post


class CreateNotificationRequest(BaseModel):
	target_user_id: str = Field(alias="targetUserId", min_length=1)
	type: str
	message: str = ""
	metadata: Dict[str, Any] = Field(default_factory=dict)

	model_config = {"populate_by_name": True}


class NotificationCreated(BaseModel):
	notification_id: str = Field(serialization_alias="notificationId")


class MarkReadResponse(BaseModel):
	updated: bool


class SystemNotificationRequest(BaseModel):
	target_user_id: Optional[str] = Field(default=None, alias="targetUserId")
	target_user_ids: List[str] = Field(default_factory=list, alias="targetUserIds")
	message: str = ""
	metadata: Dict[str, Any] = Field(default_factory=dict)

	model_config = {"populate_by_name": True}

	def targets(self) -> List[str]:
		if self.target_user_id:
			return [self.target_user_id, *self.target_user_ids]
		return list(self.target_user_ids)


class SystemNotificationCreated(BaseModel):
	notification_ids: List[str] = Field(serialization_alias="notificationIds")


class AdminDeleteRequest(BaseModel):
	notification_ids: List[str] = Field(default_factory=list, alias="notificationIds")
	reason: str = ""

	model_config = {"populate_by_name": True}


class AdminDeleteResponse(BaseModel):
	deleted_count: int = Field(serialization_alias="deletedCount")


class SetPrivilegesRequest(BaseModel):
	target_user_id: str = Field(alias="targetUserId", min_length=1)
	level: str
	permissions: List[str] = Field(default_factory=list)
	reason: str = ""

	model_config = {"populate_by_name": True}


class RemovePrivilegesRequest(BaseModel):
	target_user_id: str = Field(alias="targetUserId", min_length=1)
	reason: str = ""

	model_config = {"populate_by_name": True}


class PrivilegesResponse(BaseModel):
	target_user_id: str = Field(serialization_alias="targetUserId")
	permissions: List[str]


class BootstrapRequest(BaseModel):
	target_user_id: Optional[str] = Field(default=None, alias="targetUserId")
	reason: str = ""
	setup_key: Optional[str] = Field(default=None, alias="setupKey")

	model_config = {"populate_by_name": True}


class CreatePostRequest(BaseModel):
	content: str
	title: Optional[str] = None
	type: str = "casual"

	@field_validator("type")
	@classmethod
	def _strip_type(cls, value: str) -> str:
		return value.strip() or "casual"


class PostOut(BaseModel):
	id: str
	author_id: str
	content: str
	title: Optional[str] = None
	type: str
	comments_count: int
	created_at: datetime

	@classmethod
	def from_domain(cls, post: Post) -> "PostOut":
		return cls(
			id=post.id,
			author_id=post.author_id,
			content=post.content,
			title=post.title,
			type=post.post_type,
			comments_count=post.comments_count,
			created_at=post.created_at,
		)


class CreateCommentRequest(BaseModel):
	content: str


class CommentOut(BaseModel):
	id: str
	post_id: str
	author_id: str
	content: str
	created_at: datetime

	@classmethod
	def from_domain(cls, comment: Comment) -> "CommentOut":
		return cls(
			id=comment.id,
			post_id=comment.post_id,
			author_id=comment.author_id,
			content=comment.content,
			created_at=comment.created_at,
		)
