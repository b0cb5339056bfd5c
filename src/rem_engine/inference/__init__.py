"""REM inference — sleep-window resolution, signal scoring and the detection gate.

Architecture
------------
1. **Session windowing** (`session.py`)
   - Stage samples merged into sessions across short gaps
   - Ordered fallback chain: fresh stage session, session start /
     stillness onset, stale stage session

2. **Signal scoring** (`heart_rate.py`, `support.py`)
   - Median-anchored heart-rate band, clamped to 40–90 bpm
   - HRV / respiratory recency and plausibility

3. **Prediction** (`predictor.py`)
   - Latency / cycle / duration learned from recent nights
   - Window projection from the sleep-window start

4. **Decision** (`gate.py`, `transitions.py`)
   - Strictness tables for explicit and inferred windows
   - One "REM detected" and one "REM ended" entry per window
"""

from rem_engine.inference.gate import DetectionGate, GateDecision, GatePath
from rem_engine.inference.heart_rate import HeartRateRange, HeartRateRangeEstimator
from rem_engine.inference.predictor import REMWindowPredictor, build_prediction_model
from rem_engine.inference.session import SessionWindowResolver
from rem_engine.inference.support import SupportAssessment, SupportSignalEvaluator
from rem_engine.inference.transitions import TransitionLogger

__all__ = [
    "DetectionGate",
    "GateDecision",
    "GatePath",
    "HeartRateRange",
    "HeartRateRangeEstimator",
    "REMWindowPredictor",
    "SessionWindowResolver",
    "SupportAssessment",
    "SupportSignalEvaluator",
    "TransitionLogger",
    "build_prediction_model",
]
