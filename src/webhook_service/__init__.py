"""Webhook registry, dispatch and delivery service."""
