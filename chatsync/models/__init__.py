"""Pydantic data models shared across the client."""

from .domain import ChatRequest, Identity, Message, RequestStatus

__all__ = ["ChatRequest", "Identity", "Message", "RequestStatus"]
