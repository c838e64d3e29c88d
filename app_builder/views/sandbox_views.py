"""
Sandbox and session bookkeeping views
"""
import logging

from rest_framework import status
from rest_framework.generics import get_object_or_404
from rest_framework.response import Response
from rest_framework.views import APIView

from builder_site.utils.enum import safe_str_enum

from ..models import BuildSession
from ..serializers import BuildSessionSerializer
from ..services.sandbox_runtime import SANDBOX_ID_PATTERN
from ..tasks import remove_sandbox
from ..types import SessionKind

logger = logging.getLogger(__name__)


class SandboxDetailView(APIView):
    """
    DELETE /api/v1/sandboxes/<sandbox_id>/ - queue removal of a sandbox
    """

    def delete(self, request, sandbox_id=None):
        if not SANDBOX_ID_PATTERN.match(sandbox_id or ''):
            return Response({'error': 'Invalid sandbox id'}, status=status.HTTP_400_BAD_REQUEST)

        result = remove_sandbox.delay(sandbox_id)
        logger.info("Queued removal of sandbox %s (task %s)", sandbox_id, result.id)
        return Response(
            {'sandbox_id': sandbox_id, 'task_id': result.id},
            status=status.HTTP_202_ACCEPTED,
        )


class SandboxSessionsView(APIView):
    """
    GET /api/v1/sandboxes/<sandbox_id>/sessions/ - sessions run against a sandbox

    Optional ?kind=generate|modify narrows the list; unknown kinds are ignored.
    """

    def get(self, request, sandbox_id=None):
        sessions = BuildSession.objects.filter(sandbox_id=sandbox_id)
        kind = safe_str_enum(request.query_params.get("kind"), None, SessionKind)
        if kind is not None:
            sessions = sessions.filter(kind=kind)
        sessions = sessions[:50]
        return Response(BuildSessionSerializer(sessions, many=True).data)


class BuildSessionDetailView(APIView):
    """
    GET /api/v1/sessions/<session_id>/ - bookkeeping for one streamed session
    """

    def get(self, request, session_id=None):
        session = get_object_or_404(BuildSession, pk=session_id)
        return Response(BuildSessionSerializer(session).data)
