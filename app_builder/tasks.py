"""
Celery tasks for the app builder.
"""
import logging

from celery import shared_task

from app_builder.services.exceptions import SandboxNotFoundError
from app_builder.services.sandbox_runtime import get_sandbox_provider

logger = logging.getLogger(__name__)


@shared_task(bind=True, max_retries=0, soft_time_limit=2 * 60, time_limit=3 * 60)
def remove_sandbox(self, sandbox_id: str) -> bool:
    """
    Stop a sandbox's dev server and delete the sandbox.

    Returns False when the sandbox was already gone.
    """
    try:
        get_sandbox_provider().destroy(sandbox_id)
    except SandboxNotFoundError:
        logger.info("Sandbox %s already removed", sandbox_id)
        return False
    logger.info("Sandbox %s removed", sandbox_id)
    return True
