"""
API Views for the app builder
"""
from . import (
    sandbox_views,
    streaming_views,
)
