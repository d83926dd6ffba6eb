"""auth/ -- Authentication and authorization package for Gatehouse.

Layer rule: auth/ imports stdlib, third-party libraries and core/ (settings
and the RuleValue type). It does NOT import from api/.
auth/dependencies.py is the only module that knows about FastAPI.
api/ imports from auth/, not the other way around.
"""
