"""Persistent multi-turn chat client for OpenAI-compatible endpoints."""
