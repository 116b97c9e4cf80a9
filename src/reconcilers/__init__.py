"""Resource reconcilers.

Importing this package registers a reconciler for every descriptor type
in resources.py.
"""

from reconcilers.base import (
    Reconciler,
    get_reconciler,
    reconcile,
    reconcile_all,
    reconcile_batch,
    register_reconciler,
)

# Import reconcilers to trigger registration
from reconcilers import files  # noqa: E402,F401
from reconcilers import packages  # noqa: E402,F401
from reconcilers import repositories  # noqa: E402,F401
from reconcilers import services  # noqa: E402,F401
from reconcilers import settings  # noqa: E402,F401
from reconcilers import tunables  # noqa: E402,F401

__all__ = [
    'Reconciler',
    'get_reconciler',
    'reconcile',
    'reconcile_all',
    'reconcile_batch',
    'register_reconciler',
]
