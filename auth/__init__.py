"""auth/ -- Credential and session-lifecycle core.

Layer rule: auth/ imports only stdlib + third-party libraries (plus
core.config for type hints of injected Settings). It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
