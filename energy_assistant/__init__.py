"""
Energy Assistant Python package.

This package hosts the conversational energy query service: LLM provider
adapters, the intent/aggregation pipeline, telemetry storage access, and the
FastAPI transport. See DESIGN.md for an overview.
"""

from .__version__ import __version__

__all__ = ["__version__"]
