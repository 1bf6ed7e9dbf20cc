"""API routes"""

from deskbridge.api import audit, correlations, webhook

__all__ = ["webhook", "correlations", "audit"]
