"""Negotiation orchestration engine for an LLM-driven seller agent."""

__version__ = "0.1.0"
