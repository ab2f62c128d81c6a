"""API layer - read-only REST facade over the creator store."""

from pumpfun_creator_tracker.api.app import create_app

__all__ = ["create_app"]
