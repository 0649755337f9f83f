"""auth/ -- Token lifecycle and role hierarchy core for authcore.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
(auth/dependencies.py is the one FastAPI-aware module; it is part of the
dependency injection seam, not of the HTTP routes.)
"""
