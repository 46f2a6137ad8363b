"""Inference gateways, user context and the chat session controller."""
