"""Core utility functions."""

from core.utils.agent_id import generate_agent_id
from core.utils.json_serializers import json_serializer

__all__ = ["json_serializer", "generate_agent_id"]
