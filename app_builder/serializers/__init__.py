"""
DRF Serializers for the app builder
"""
from .session import (
    BuildSessionSerializer,
    GenerateRequestSerializer,
    ModifyRequestSerializer,
)

__all__ = [
    'BuildSessionSerializer',
    'GenerateRequestSerializer',
    'ModifyRequestSerializer',
]
