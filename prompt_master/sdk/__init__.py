"""
SDK for Prompt Master.

Clients for the external text-generation service.
"""

from .openai_client import OpenAITextGenerator

__all__ = ["OpenAITextGenerator"]
