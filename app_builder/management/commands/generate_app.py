"""
Management command that generates a new application inside a sandbox.

Progress is written to stdout as marker lines, so the command can run
standalone in a terminal or as the subprocess behind a streamed session.

Usage:
    python manage.py generate_app "Create a recipe sharing site"
    python manage.py generate_app --sandbox-id abc123 "Create a recipe sharing site"
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
    help = 'Generate a Next.js application in a sandbox, verify its build, and serve it'

    def add_arguments(self, parser):
        parser.add_argument(
            'prompt',
            nargs='*',
            help='What to build (defaults to a sample blog site)',
        )
        parser.add_argument(
            '--sandbox-id',
            type=str,
            default=None,
            help='Reuse an existing sandbox instead of creating a new one',
        )

    def handle(self, *args, **options):
        prompt = ' '.join(options['prompt']).strip()
        sandbox_id = options.get('sandbox_id')

        emitter = MarkerEmitter(self.stdout.write, flush=self.stdout.flush)
        try:
            runtime = get_sandbox_provider().get_or_create(sandbox_id)
            orchestrator = SessionOrchestrator(runtime, get_generation_agent(), emitter)
            outcome = orchestrator.generate(prompt)
        except AppBuilderError as e:
            logger.error("Generation failed: %s", e)
            raise CommandError(str(e)) from e

        if outcome.build_succeeded:
            self.stdout.write(self.style.SUCCESS('Website generated!'))
        else:
            self.stdout.write(self.style.WARNING('Website generated, but the build is not passing yet'))
