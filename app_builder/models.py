import uuid

from django.db import models

from builder_site.utils.base_model import BaseModel
from builder_site.utils.enum import choices
from app_builder.types import SessionKind, SessionStatus


class BuildSession(BaseModel):
    """
    Bookkeeping for one streamed generate or modify session.

    Written by the HTTP side only: created when the stream starts and
    updated once the session subprocess has terminated.
    """

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    sandbox_id = models.CharField(max_length=64, blank=True, db_index=True)
    kind = models.CharField(max_length=16, choices=choices(SessionKind))
    prompt = models.TextField(blank=True)
    status = models.CharField(
        max_length=16,
        choices=choices(SessionStatus),
        default=SessionStatus.RUNNING,
    )
    exit_code = models.IntegerField(null=True, blank=True)
    error_message = models.TextField(blank=True)
    event_count = models.PositiveIntegerField(default=0)
    started_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['-started_at']
        indexes = [
            models.Index(fields=['sandbox_id', '-started_at'], name='build_sess_sandbox_idx'),
        ]

    def __str__(self):
        return f"{self.kind} {self.sandbox_id or '(new)'} [{self.status}]"

    @property
    def is_finished(self) -> bool:
        return self.status != SessionStatus.RUNNING
