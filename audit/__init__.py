"""
audit -- Append-only audit trail and the anomaly detector that watches it.

Layer rule: audit/ may import from core/ and third-party libraries only.
It must never import from api/, auth/, or catalog/. Collaborators the
detector needs (the order-mismatch counter) are passed in as callables.
"""
