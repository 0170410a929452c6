"""Negotiation services."""
