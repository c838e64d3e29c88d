"""
URL configuration for app_builder.
"""
from django.urls import path

from .views import sandbox_views, streaming_views

urlpatterns = [
    # Streaming sessions (SSE); kept off sandboxes/ so any valid sandbox id routes
    path(
        'sessions/generate/',
        streaming_views.SandboxGenerateStreamView.as_view(),
        name='sandbox-generate',
    ),
    path(
        'sessions/modify/',
        streaming_views.SandboxModifyStreamView.as_view(),
        name='sandbox-modify',
    ),

    # Sandboxes
    path(
        'sandboxes/<str:sandbox_id>/',
        sandbox_views.SandboxDetailView.as_view(),
        name='sandbox-detail',
    ),
    path(
        'sandboxes/<str:sandbox_id>/sessions/',
        sandbox_views.SandboxSessionsView.as_view(),
        name='sandbox-sessions',
    ),

    # Session bookkeeping
    path(
        'sessions/<uuid:session_id>/',
        sandbox_views.BuildSessionDetailView.as_view(),
        name='build-session-detail',
    ),
]
