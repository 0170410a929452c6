"""Orchestration core: state store, round limits, turn orchestrator."""
