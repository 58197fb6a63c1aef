"""
In-memory ward: a minimal host simulation implementing PrognosisHost.

Used by the tests and by the console simulation. It is deliberately naive:
severity and immunity move linearly at the per-day rates they were given,
a patient dies when any severity reaches 1.0, and an affliction recedes
once immunity is complete and is removed when its severity reaches zero.
"""

from collections.abc import Iterable

import structlog
from pydantic import BaseModel, Field

from prognosis.domain.models import (
    TICKS_PER_DAY,
    AfflictionSnapshot,
    AlertNotification,
    PatientSnapshot,
)
from prognosis.services.boundary import Result
from prognosis.services.prognosis_service import PrognosisService

logger = structlog.get_logger(__name__)


class WardAffliction(BaseModel):
    """Mutable affliction state owned by the ward."""

    kind: str
    label: str = ""
    severity: float = Field(default=0.1, ge=0.0)
    severity_rate_per_day: float = 0.0
    immunity: float = Field(default=0.0, ge=0.0, le=1.0)
    immunity_rate_per_day: float = 0.0
    recovery_rate_per_day: float = Field(
        default=0.5, gt=0.0, description="Severity drop per day once fully immune"
    )

    @property
    def fully_immune(self) -> bool:
        return self.immunity >= 1.0

    def advance(self, days: float) -> None:
        if self.fully_immune:
            self.severity = max(0.0, self.severity - self.recovery_rate_per_day * days)
            return
        self.immunity = min(1.0, max(0.0, self.immunity + self.immunity_rate_per_day * days))
        self.severity = max(0.0, self.severity + self.severity_rate_per_day * days)

    def to_snapshot(self) -> AfflictionSnapshot:
        return AfflictionSnapshot(
            kind=self.kind,
            label=self.label or self.kind.lower(),
            severity=self.severity,
            severity_rate_per_day=-self.recovery_rate_per_day
            if self.fully_immune
            else self.severity_rate_per_day,
            immunity=self.immunity,
            immunity_rate_per_day=0.0 if self.fully_immune else self.immunity_rate_per_day,
        )


class WardPatient(BaseModel):
    """Mutable patient state owned by the ward. Doctors are patients with a skill."""

    patient_id: str
    patient_number: int
    label: str
    dead: bool = False
    medicine_skill: int | None = Field(None, description="Medicine level when acting as doctor")
    afflictions: list[WardAffliction] = Field(default_factory=list)

    def affliction(self, kind: str) -> WardAffliction | None:
        return next((a for a in self.afflictions if a.kind == kind), None)

    def to_snapshot(self) -> PatientSnapshot:
        return PatientSnapshot(
            patient_id=self.patient_id,
            patient_number=self.patient_number,
            label=self.label,
            dead=self.dead,
            afflictions=[a.to_snapshot() for a in self.afflictions],
        )


class InMemoryWard:
    """PrognosisHost backed by plain dictionaries."""

    def __init__(self, start_tick: int = 0) -> None:
        self.tick = start_tick
        self.patients: dict[str, WardPatient] = {}
        self.letters: list[AlertNotification] = []
        self._next_number = 1
        self.logger = logger.bind(component="in_memory_ward")

    # PrognosisHost

    def current_tick(self) -> int:
        return self.tick

    def alive_patient_ids(self) -> set[str]:
        return {pid for pid, patient in self.patients.items() if not patient.dead}

    def find_patient(self, patient_id: str) -> PatientSnapshot | None:
        patient = self.patients.get(patient_id)
        return patient.to_snapshot() if patient is not None else None

    def send_alert(self, notification: AlertNotification) -> None:
        self.letters.append(notification)
        self.logger.info("letter_received", title=notification.title)

    # Ward operations

    def admit(self, label: str, medicine_skill: int | None = None) -> WardPatient:
        number = self._next_number
        self._next_number += 1
        patient = WardPatient(
            patient_id=f"Thing_Human{number}",
            patient_number=number,
            label=label,
            medicine_skill=medicine_skill,
        )
        self.patients[patient.patient_id] = patient
        return patient

    def discharge(self, patient_id: str) -> None:
        """Patient leaves the world entirely (no longer in the census)."""
        self.patients.pop(patient_id, None)

    def kill(self, patient_id: str) -> None:
        self.patients[patient_id].dead = True

    def infect(
        self,
        patient_id: str,
        kind: str,
        severity: float = 0.1,
        severity_rate_per_day: float = 0.2,
        immunity_rate_per_day: float = 0.2,
        immunity: float = 0.0,
        label: str = "",
    ) -> WardAffliction:
        affliction = WardAffliction(
            kind=kind,
            label=label,
            severity=severity,
            severity_rate_per_day=severity_rate_per_day,
            immunity=immunity,
            immunity_rate_per_day=immunity_rate_per_day,
        )
        patient = self.patients[patient_id]
        patient.afflictions = [a for a in patient.afflictions if a.kind != kind] + [affliction]
        return affliction

    def cure(self, patient_id: str, kind: str) -> None:
        patient = self.patients[patient_id]
        patient.afflictions = [a for a in patient.afflictions if a.kind != kind]

    def tend(
        self,
        service: PrognosisService,
        doctor_id: str,
        patient_id: str,
        succeeded: bool = True,
    ) -> Result[int]:
        """Complete a treatment job and report it to the prognosis service."""
        doctor = self.patients.get(doctor_id)
        skill = doctor.medicine_skill if doctor is not None else None
        return service.on_treatment_completed(patient_id, skill, succeeded=succeeded)

    def advance(self, ticks: int) -> None:
        """Move the simulation forward without calling any service."""
        self.tick += ticks
        days = ticks / TICKS_PER_DAY
        for patient in self.patients.values():
            if patient.dead:
                continue
            for affliction in patient.afflictions:
                affliction.advance(days)
            if any(a.severity >= 1.0 for a in patient.afflictions):
                patient.dead = True
                self.logger.info("patient_died", patient_id=patient.patient_id)
                continue
            patient.afflictions = [
                a for a in patient.afflictions if not (a.fully_immune and a.severity <= 0.0)
            ]

    def run(
        self,
        service: PrognosisService,
        ticks: int,
        step_ticks: int = 250,
        patient_ids: Iterable[str] | None = None,
    ) -> list[AlertNotification]:
        """Advance in steps, pulsing the service the way a host health tick would."""
        fired: list[AlertNotification] = []
        fixed_ids = list(patient_ids) if patient_ids is not None else None
        remaining = ticks
        while remaining > 0:
            step = min(step_ticks, remaining)
            remaining -= step
            self.advance(step)
            service.on_tick()
            ids = fixed_ids if fixed_ids is not None else sorted(self.alive_patient_ids())
            for patient_id in ids:
                fired.extend(service.on_evaluation_pulse(patient_id).unwrap_or([]))
        return fired
