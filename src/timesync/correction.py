"""
Clock correction policy.

The measured offset plus the local bias is the corrected offset. Crossing
the positive/negative phase-correction thresholds only produces a warning;
the dead-band (max allowed phase offset) alone decides whether the clock
authority is called.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from .clock import ClockAuthority
from .config import SyncPolicy
from .errors import ClockAdjustError
from .logging import debug_log_call

logger = logging.getLogger(__name__)


@dataclass
class CorrectionResult:
    """What the corrector decided and did for one round."""
    offset_ms: float
    corrected_offset_ms: float
    peer: Optional[str] = None
    adjusted: bool = False
    warnings: List[str] = field(default_factory=list)
    error: Optional[ClockAdjustError] = None

    @property
    def attempted(self) -> bool:
        return self.adjusted or self.error is not None


class Corrector:
    """Applies a SyncPolicy to a selected offset and drives the clock authority."""

    def __init__(self, clock: ClockAuthority):
        self.clock = clock

    @debug_log_call
    def apply(self, offset_ms: float, policy: SyncPolicy,
              peer: Optional[str] = None) -> CorrectionResult:
        """
        Evaluate one offset and adjust the clock at most once.

        Clock authority failures are logged and returned, never raised.

        Args:
            offset_ms: Measured offset of the selected sample (milliseconds)
            policy: Thresholds and bias for this round
            peer: Peer that produced the offset, for log messages

        Returns:
            CorrectionResult
        """
        source = peer or "selected peer"
        corrected = offset_ms + policy.local_bias
        result = CorrectionResult(offset_ms=offset_ms, corrected_offset_ms=corrected, peer=peer)

        logger.debug(f"[{source}] Offset + local bias: {corrected:.3f}ms")

        if corrected > 0 and corrected > policy.max_pos_phase_correction:
            message = (f"[{source}] Positive phase correction {corrected:.3f}ms exceeds "
                       f"max_pos_phase_correction {policy.max_pos_phase_correction:g}ms")
            logger.warning(message)
            result.warnings.append(message)

        if corrected < 0 and abs(corrected) > policy.max_neg_phase_correction:
            message = (f"[{source}] Negative phase correction {corrected:.3f}ms exceeds "
                       f"max_neg_phase_correction {policy.max_neg_phase_correction:g}ms")
            logger.warning(message)
            result.warnings.append(message)

        if abs(corrected) <= policy.max_allowed_phase_offset:
            logger.debug(f"[{source}] Offset {corrected:.3f}ms within dead-band "
                         f"{policy.max_allowed_phase_offset:g}ms, no adjustment")
            return result

        before = datetime.now(timezone.utc)
        try:
            self.clock.adjust_clock(timedelta(milliseconds=corrected))
        except ClockAdjustError as e:
            logger.error(f"[{source}] Clock adjustment failed: {e}")
            result.error = e
        except Exception as e:
            error = ClockAdjustError(f"{type(e).__name__}: {e}")
            error.__cause__ = e
            logger.error(f"[{source}] Clock adjustment failed: {error}")
            result.error = error
        else:
            result.adjusted = True
            logger.info(f"[{source}] Adjusted clock by {corrected:.3f}ms: "
                        f"{before.isoformat()} -> {datetime.now(timezone.utc).isoformat()}")

        return result
