"""
Client module for S402 pay-per-call endpoints.

Provides an httpx client that answers 402 challenges by signing and
settling the payment, then retries with the proof attached.
"""

from .http_client import S402Client

__all__ = ["S402Client"]
