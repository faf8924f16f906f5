"""auth/ -- Identity, session tokens, second factor and authorization.

Layer rule: auth/ imports only core/, audit/ (the gate records denials) and
third-party libraries. It does NOT import from api/ or catalog/.
api/ imports from auth/, not the other way around.
"""
