"""Expose ORM models at package level.

These re-exports are intentional so callers (and Alembic autogenerate) can
import from ``models``. The `F401` noqa suppresses unused-import warnings.
"""

from .base import Base  # noqa: F401
from .bulk_campaigns import BulkCampaign  # noqa: F401
from .delivery_jobs import DeliveryJob  # noqa: F401
