"""Stateful managers for the workspace server.

Each module owns one kind of live resource (browser processes, CDP
connections).  Managers raise domain exceptions (``LookupError``,
``RuntimeError`` subclasses), never HTTP exceptions -- that translation is
the router's responsibility.
"""
