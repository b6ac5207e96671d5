"""auth/ -- Credentials, session tokens, role grants and the entitlement policy.

Layer rule: auth/ imports from core/ and database/schema.py only.
It does NOT import from api/ or services/.
api/ and services/ import from auth/, not the other way around.
"""
