"""Ports describing the collaborators the router depends on."""

from .ports import MessageHandler, Transport

__all__ = ["MessageHandler", "Transport"]
