"""
At-risk alert de-duplication.

Each (patient, affliction) key cycles Armed -> Fired -> Armed. Armed is
implicit: a key is Armed while it is absent from the fired set. The set is
process-local and never saved.
"""

import structlog

from prognosis.domain.models import (
    AfflictionSnapshot,
    AlertKey,
    AlertNotification,
    PatientSnapshot,
    Severity,
)
from prognosis.services.forecaster import is_at_risk

logger = structlog.get_logger(__name__)


def build_risk_alert(patient: PatientSnapshot, affliction: AfflictionSnapshot) -> AlertNotification:
    label = affliction.display_label
    title = f"At risk: {patient.label} - {label[:1].upper() + label[1:]}"
    body = f"{patient.label} is at risk from {label} (severity {int(affliction.severity * 100)}%)."
    return AlertNotification(
        title=title,
        body=body,
        severity=Severity.CRITICAL,
        patient_id=patient.patient_id,
        affliction_kind=affliction.kind,
    )


class AlertDeduplicator:
    """Ensures at most one at-risk alert per affliction episode."""

    def __init__(self) -> None:
        self._fired: set[AlertKey] = set()
        self.logger = logger.bind(component="alert_deduplicator")

    def __len__(self) -> int:
        return len(self._fired)

    def __contains__(self, key: object) -> bool:
        return key in self._fired

    def should_fire(self, key: AlertKey) -> bool:
        return key not in self._fired

    def mark_fired(self, key: AlertKey) -> None:
        self._fired.add(key)

    def reset(self, key: AlertKey) -> bool:
        if key in self._fired:
            self._fired.discard(key)
            self.logger.debug(
                "alert_rearmed",
                patient_number=key.patient_number,
                affliction_kind=key.affliction_kind,
            )
            return True
        return False

    def fired_kinds_for(self, patient_number: int) -> set[str]:
        return {key.affliction_kind for key in self._fired if key.patient_number == patient_number}

    def reset_missing(self, patient: PatientSnapshot, present_kinds: set[str]) -> int:
        """Re-arm keys whose affliction is no longer on the patient."""
        gone = self.fired_kinds_for(patient.patient_number) - present_kinds
        for kind in gone:
            self.reset(AlertKey(patient_number=patient.patient_number, affliction_kind=kind))
        return len(gone)

    def evaluate(
        self,
        patient: PatientSnapshot,
        affliction: AfflictionSnapshot,
        gate_met: bool,
        threshold: float,
    ) -> AlertNotification | None:
        """Run one transition step for a present affliction."""
        key = AlertKey(patient_number=patient.patient_number, affliction_kind=affliction.kind)

        # Gate lost: re-arm so a later qualifying treatment can alert again
        if not gate_met:
            self.reset(key)
            return None

        at_risk = is_at_risk(
            affliction.immunity,
            affliction.immunity_rate_per_day,
            affliction.severity,
            affliction.severity_rate_per_day,
        )
        if not (at_risk and affliction.severity >= threshold and self.should_fire(key)):
            return None

        self.mark_fired(key)
        notification = build_risk_alert(patient, affliction)
        self.logger.info(
            "risk_alert_fired",
            patient_id=patient.patient_id,
            affliction_kind=affliction.kind,
            severity=round(affliction.severity, 3),
        )
        return notification

    def clear(self) -> None:
        self._fired.clear()
