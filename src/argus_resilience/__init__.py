"""
argus-resilience — resilience engine for Docker-based test environments.

File: src/argus_resilience/__init__.py

Purpose
- Package root. Exposes the version; components live in subpackages
  (``resilience``, ``runtime``, ``config``, ``observability``, ``utils``).

Import boundary
- No side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
