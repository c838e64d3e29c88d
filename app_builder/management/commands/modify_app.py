"""
Management command that applies a modification request to a sandbox's app.

Usage:
    python manage.py modify_app <sandbox_id> "Add a contact page"
"""
import logging

from django.core.management.base import BaseCommand, CommandError

from app_builder.services.event_codec import MarkerEmitter
from app_builder.services.exceptions import AppBuilderError
from app_builder.services.generation_agent import get_generation_agent
from app_builder.services.sandbox_runtime import get_sandbox_provider
from app_builder.services.session_orchestrator import SessionOrchestrator

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Modify an existing sandbox application, then verify and restart it'

    def add_arguments(self, parser):
        parser.add_argument('sandbox_id', type=str)
        parser.add_argument('request', nargs='+', help='The modification to make')

    def handle(self, *args, **options):
        sandbox_id = options['sandbox_id']
        request = ' '.join(options['request']).strip()
        if not request:
            raise CommandError('A modification request is required')

        emitter = MarkerEmitter(self.stdout.write, flush=self.stdout.flush)
        try:
            runtime = get_sandbox_provider().get(sandbox_id)
            SessionOrchestrator(runtime, get_generation_agent(), emitter).modify(request)
        except AppBuilderError as e:
            logger.error("Modification of sandbox %s failed: %s", sandbox_id, e)
            raise CommandError(str(e)) from e
