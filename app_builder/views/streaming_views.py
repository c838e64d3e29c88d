"""
Streaming Views for Sandbox Sessions

Server-Sent Events endpoints that run a generate or modify session and relay
its progress live. Each request gets its own session subprocess; the stream
always ends with one `complete` or `error` event and then `data: [DONE]`.
"""
import json
import logging

from django.conf import settings
from django.http import JsonResponse, StreamingHttpResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from ..serializers import GenerateRequestSerializer, ModifyRequestSerializer
from ..services.exceptions import SandboxNotFoundError
from ..services.sandbox_runtime import get_sandbox_provider
from ..services.session_orchestrator import get_session_launcher
from ..types import SessionKind

logger = logging.getLogger(__name__)


# Original clients post camelCase keys
_FIELD_ALIASES = {
    'sandboxId': 'sandbox_id',
}


def _parse_json_body(request):
    """Return the request's JSON object body, or a JsonResponse error."""
    try:
        body = json.loads(request.body or b'{}')
    except ValueError:
        return JsonResponse({"error": "Request body must be valid JSON"}, status=400)
    if not isinstance(body, dict):
        return JsonResponse({"error": "Request body must be a JSON object"}, status=400)
    for alias, field in _FIELD_ALIASES.items():
        if alias in body and field not in body:
            body[field] = body.pop(alias)
    return body


def _missing_api_key_response():
    if not getattr(settings, 'ANTHROPIC_API_KEY', ''):
        logger.error("ANTHROPIC_API_KEY is not configured")
        return JsonResponse({"error": "Missing API keys"}, status=500)
    return None


def _event_stream_response(sink, session):
    response = StreamingHttpResponse(sink, content_type='text/event-stream')
    response['Cache-Control'] = 'no-cache'
    response['X-Accel-Buffering'] = 'no'
    response['X-Session-Id'] = str(session.pk)
    response['X-Sandbox-Id'] = session.sandbox_id
    return response


@method_decorator(csrf_exempt, name='dispatch')
class SandboxModifyStreamView(View):
    """
    SSE endpoint for modifying an existing sandbox application.

    POST /api/v1/sessions/modify/
    Body: {"sandbox_id": "...", "message": "..."}
    """

    def post(self, request):
        body = _parse_json_body(request)
        if isinstance(body, JsonResponse):
            return body

        serializer = ModifyRequestSerializer(data=body)
        if not serializer.is_valid():
            return JsonResponse(
                {"error": "Sandbox ID and message are required", "details": serializer.errors},
                status=400,
            )

        error = _missing_api_key_response()
        if error is not None:
            return error

        sandbox_id = serializer.validated_data['sandbox_id']
        message = serializer.validated_data['message']
        try:
            get_sandbox_provider().get(sandbox_id)
        except SandboxNotFoundError as e:
            return JsonResponse({"error": str(e)}, status=404)

        logger.info("Starting modification for sandbox %s: %s", sandbox_id, message)
        session, sink = get_session_launcher().start(SessionKind.MODIFY, message, sandbox_id)
        return _event_stream_response(sink, session)


@method_decorator(csrf_exempt, name='dispatch')
class SandboxGenerateStreamView(View):
    """
    SSE endpoint for generating a new application.

    POST /api/v1/sessions/generate/
    Body: {"prompt": "...", "sandbox_id": "..." (optional)}
    """

    def post(self, request):
        body = _parse_json_body(request)
        if isinstance(body, JsonResponse):
            return body

        serializer = GenerateRequestSerializer(data=body)
        if not serializer.is_valid():
            return JsonResponse(
                {"error": "Invalid generation request", "details": serializer.errors},
                status=400,
            )

        error = _missing_api_key_response()
        if error is not None:
            return error

        prompt = serializer.validated_data['prompt']
        sandbox_id = serializer.validated_data['sandbox_id'] or None

        logger.info("Starting generation in sandbox %s", sandbox_id or "(new)")
        session, sink = get_session_launcher().start(SessionKind.GENERATE, prompt, sandbox_id)
        return _event_stream_response(sink, session)
