"""Execution backend (runner).

This module provides:
- The runner HTTP service (``/run``, conversation API)
- The client the queue processor uses to call it
- Prompt extraction and the warm-up greeting
"""
