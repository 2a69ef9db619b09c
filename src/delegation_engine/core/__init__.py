"""
Core: ports (interfaces), errors, authorization helpers and AppState.
"""
