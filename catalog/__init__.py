"""
catalog -- Storefront collaborator data: products, sizes, site settings,
gift cards and orders.

These are the thin CRUD tables the admin endpoints change and the security
core audits. Nothing here makes an authorization decision.

Layer rule: catalog/ may import from core/ only.
"""
