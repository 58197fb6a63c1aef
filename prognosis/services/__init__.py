"""
Core services for prognosis.

This package contains the forecaster, the treatment memory, the alert
de-duplicator and the session facade the host calls into.
"""

from .alerting import AlertDeduplicator, build_risk_alert
from .boundary import Result, configure_logging
from .forecaster import classify, is_at_risk
from .host import PrognosisHost
from .prognosis_service import PrognosisService, SessionClosedError
from .treatment_memory import TreatmentMemory, TreatmentMemorySnapshot

__all__ = [
    "AlertDeduplicator",
    "PrognosisHost",
    "PrognosisService",
    "Result",
    "SessionClosedError",
    "TreatmentMemory",
    "TreatmentMemorySnapshot",
    "build_risk_alert",
    "classify",
    "configure_logging",
    "is_at_risk",
]
