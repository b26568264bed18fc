"""Two-tier change detection."""

from .change_detector import ChangeDetector
from .signature import make_signature, new_signatures, score_confidence

__all__ = ["ChangeDetector", "make_signature", "new_signatures", "score_confidence"]
