# Interfaces (Abstract Contracts)
# Adapters implement these interfaces
from .services import ChargeRequest, ChargeResult, PaymentGateway

__all__ = [
    "ChargeRequest",
    "ChargeResult",
    "PaymentGateway",
]
