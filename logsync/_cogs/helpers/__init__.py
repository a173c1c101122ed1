"""
General-purpose helpers not related to the agent's domain,
used to prepare and control the runtime environment.

Helpers do not depend on anything else in the package.
"""
