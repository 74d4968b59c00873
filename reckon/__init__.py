"""
reckon — order pricing and payment reconciliation.

    from reckon import idempotency as I  # At-most-once execution per key
    from reckon import saga as S         # Compensated multi-step writes
    from reckon.wiring import build_services
"""

from reckon import saga
from reckon import idempotency

__version__ = "0.1.0"

__all__ = (
    "idempotency",
    "saga",
)
