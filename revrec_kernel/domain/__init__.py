"""Pure domain values for the revenue recognition kernel."""

from revrec_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from revrec_kernel.domain.currency import CurrencyInfo, CurrencyRegistry, quantize_amount

__all__ = [
    "Clock",
    "CurrencyInfo",
    "CurrencyRegistry",
    "DeterministicClock",
    "SystemClock",
    "quantize_amount",
]
