"""storage/ -- SQLAlchemy Core schema and table gateways.

Layer rule: storage/ imports from core/ only.
hrbac/ imports from storage/, not the other way around.
"""
