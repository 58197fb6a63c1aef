"""
Domain models for disease prognosis.

These models represent the core business concepts and are host-agnostic.
Host data (patients, afflictions) arrives as frozen snapshots; the only
state this package owns is the treatment memory and the fired-alert set.
"""

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field

# Per-tick host rates are multiplied by this to get per-day rates
TICKS_PER_DAY = 60_000


class Verdict(str, Enum):
    """Qualitative forecast of the severity/immunity race."""

    STABLE = "Stable"
    AT_RISK = "At risk"
    IMPROVING = "Improving"
    LIKELY_IMMUNE = "Likely immune"
    NONE = ""

    @property
    def label(self) -> str:
        return self.value


class Severity(str, Enum):
    """Category hint for the host's delivery channel. At-risk alerts are the only kind sent."""

    CRITICAL = "critical"


class AfflictionKey(BaseModel):
    """Treatment memory key: one record per (patient, affliction kind)."""

    model_config = ConfigDict(frozen=True)

    patient_id: str
    affliction_kind: str


class AlertKey(BaseModel):
    """Alert de-duplication key, keyed on the patient's numeric id."""

    model_config = ConfigDict(frozen=True)

    patient_number: int
    affliction_kind: str


class TreatmentRecord(BaseModel):
    """Most recent qualifying treatment applied for one affliction on one patient."""

    model_config = ConfigDict(frozen=True)

    treatment_level: int
    recorded_at_tick: int = Field(description="Simulation tick of the treatment, diagnostics only")


class AfflictionSnapshot(BaseModel):
    """Host view of one active affliction at the moment of the call."""

    model_config = ConfigDict(frozen=True)

    kind: str = Field(min_length=1, description="Stable identifier, e.g. 'Flu'")
    label: str = Field(default="", description="Lower-case display label, e.g. 'flu'")
    severity: float = Field(description="Current severity, 1.0 is fatal")
    severity_rate_per_day: float
    immunity: float = Field(description="Current immunity, 1.0 is fully immune")
    immunity_rate_per_day: float

    @computed_field(return_type=bool)
    def fully_immune(self) -> bool:
        return self.immunity >= 1.0

    @property
    def display_label(self) -> str:
        return self.label or self.kind


class PatientSnapshot(BaseModel):
    """Host view of a patient and their active afflictions."""

    model_config = ConfigDict(frozen=True)

    patient_id: str = Field(description="Opaque unique load id, e.g. 'Thing_Human412'")
    patient_number: int = Field(description="Numeric thing id")
    label: str = Field(description="Short display name")
    dead: bool = False
    afflictions: list[AfflictionSnapshot] = Field(default_factory=list)

    def affliction(self, kind: str) -> AfflictionSnapshot | None:
        for affliction in self.afflictions:
            if affliction.kind == kind:
                return affliction
        return None

    def active_kinds(self) -> set[str]:
        """Kinds of afflictions that are present and not yet fully immune."""
        return {a.kind for a in self.afflictions if not a.fully_immune}


class AlertNotification(BaseModel):
    """Fire-and-forget alert request handed to the host."""

    title: str
    body: str
    severity: Severity
    patient_id: str
    affliction_kind: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
