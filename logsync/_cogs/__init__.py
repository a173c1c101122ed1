"""
Cogs are the low-level parts of the agent: structures, API clients, settings.

Cogs know nothing about the reactor (the filtering, queueing & dispatching).
"""
