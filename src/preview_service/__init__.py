"""
Document Preview Service package.

This module provides a FastAPI application that stores uploaded documents and
attaches a raster preview to each, falling back through several rendering
strategies so an upload always gets something displayable.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
