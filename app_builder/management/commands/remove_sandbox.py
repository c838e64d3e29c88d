"""
Management command that stops a sandbox's server and deletes the sandbox.

Usage:
    python manage.py remove_sandbox <sandbox_id>
"""
from django.core.management.base import BaseCommand, CommandError

from app_builder.services.exceptions import SandboxNotFoundError
from app_builder.services.sandbox_runtime import get_sandbox_provider


class Command(BaseCommand):
    help = 'Remove a sandbox and everything in it'

    def add_arguments(self, parser):
        parser.add_argument('sandbox_id', type=str)

    def handle(self, *args, **options):
        sandbox_id = options['sandbox_id']
        try:
            get_sandbox_provider().destroy(sandbox_id)
        except SandboxNotFoundError as e:
            raise CommandError(str(e)) from e
        self.stdout.write(self.style.SUCCESS(f'Sandbox {sandbox_id} removed'))
