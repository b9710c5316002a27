"""Dispatch queue and message processing.

This module provides:
- The DispatchQueue interface with in-memory and SQS backends
- The queue processor that authenticates, calls the runner and replies
- The consumer loop that polls the queue
"""
