"""
nexus-verify — package root

File: src/nexus_verify/__init__.py
Last updated: 2026-10-19

Purpose
- Package root for the verification unit orchestrator.

Functional requirements
- Must not have side effects at import time (no config loading, no logging init).
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
