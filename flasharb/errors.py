# flasharb/errors.py
"""
Error taxonomy for the opportunity engine

Venue errors stop at the QuoteAggregator, profit/risk rejections stop at
the ProfitModel and RiskAssessor. Only execution errors reach the
notification sink.
"""


class FlashArbError(Exception):
    """Base class for all engine errors"""


# =============================================================================
# VENUE ERRORS
# =============================================================================

class VenueError(FlashArbError):
    """A venue could not produce a usable quote"""

    def __init__(self, venue: str, message: str = ""):
        self.venue = venue
        super().__init__(f"{venue}: {message}" if message else venue)


class VenueUnavailable(VenueError):
    """Network/RPC failure or timeout. Counts toward the circuit breaker."""


class PoolNotFound(VenueError):
    """No pool for the pair / fee tier on this venue"""


class InsufficientLiquidity(VenueError):
    """Pool exists but cannot fill the requested size"""


class QuoteMismatch(VenueError):
    """External quote disagrees with the local recomputation from pool state"""


# =============================================================================
# OPPORTUNITY ERRORS
# =============================================================================

class QuoteStale(FlashArbError):
    """A quote was used after its validUntil deadline"""


class PriceImpactExceeded(FlashArbError):
    """Trade size would move a leg past the configured impact ceiling"""


class AbortedByRevalidation(FlashArbError):
    """Profit or risk degraded between detection and submission"""


# =============================================================================
# EXECUTION ERRORS
# =============================================================================

class ExecutionError(FlashArbError):
    """Base class for submission / confirmation failures"""


class ExecutionReverted(ExecutionError):
    """Transaction was included but reverted on-chain"""

    def __init__(self, tx_hash: str, message: str = "reverted"):
        self.tx_hash = tx_hash
        super().__init__(f"{tx_hash}: {message}")


class SubmissionFailed(ExecutionError):
    """Transaction could not be built, signed or broadcast"""


# =============================================================================
# REFERENCE PRICE ERRORS
# =============================================================================

class OracleUnavailable(FlashArbError):
    """Reference price missing, stale or unreadable"""
