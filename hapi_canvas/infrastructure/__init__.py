"""
Infrastructure Module

Adapters to the outside world: response cache (memory + Redis), OAuth
credential lifecycle, and the httpx transport helpers.
"""
