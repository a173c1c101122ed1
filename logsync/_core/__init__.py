"""
The core of the agent: turning watch-events into work items and dispatching them.
"""
