"""hrbac/ -- Hierarchical scope access control services.

Layer rule: hrbac/ imports from core/ and storage/.
Nothing in core/ or storage/ imports from hrbac/.
"""

from hrbac.service import HRBAC

__all__ = ["HRBAC"]
