"""
Per-(patient, affliction) memory of the last qualifying treatment level.

One instance per game session, owned by the session's PrognosisService.
Records are upserted when a treatment completes and swept on a coarse
interval once the patient is gone or the affliction has run its course,
so the store stays bounded by the number of currently treated afflictions.
"""

from collections.abc import Callable, Iterable, Iterator

import structlog
from pydantic import BaseModel, Field

from prognosis.config import TreatmentMemoryConfig
from prognosis.domain.models import AfflictionKey, TreatmentRecord

logger = structlog.get_logger(__name__)

KEY_SEPARATOR = "|"

ActiveAfflictionCheck = Callable[[str, str], bool]


class StoredTreatment(BaseModel):
    """Persisted value layout."""

    lvl: int = 0
    tick: int = 0


class TreatmentMemorySnapshot(BaseModel):
    """Save-file form: ``"<patient_id>|<affliction_kind>" -> {lvl, tick}``."""

    entries: dict[str, StoredTreatment] = Field(default_factory=dict)


def check_patient_id(patient_id: str) -> None:
    """Persisted keys split at the first separator, so ids must not contain it."""
    if KEY_SEPARATOR in patient_id:
        raise ValueError(
            f"patient id {patient_id!r} contains the key separator {KEY_SEPARATOR!r}"
        )


def encode_key(key: AfflictionKey) -> str:
    check_patient_id(key.patient_id)
    return key.patient_id + KEY_SEPARATOR + key.affliction_kind


def decode_key(raw: str) -> AfflictionKey:
    patient_id, _, affliction_kind = raw.partition(KEY_SEPARATOR)
    return AfflictionKey(patient_id=patient_id, affliction_kind=affliction_kind)


class TreatmentMemory:
    """Keyed store of TreatmentRecords with a gate predicate and periodic sweep."""

    def __init__(self, config: TreatmentMemoryConfig | None = None) -> None:
        self.config = config or TreatmentMemoryConfig()
        self._records: dict[AfflictionKey, TreatmentRecord] = {}
        self.last_cleanup_tick = 0
        self.logger = logger.bind(component="treatment_memory")

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, key: object) -> bool:
        return key in self._records

    def __iter__(self) -> Iterator[AfflictionKey]:
        return iter(list(self._records))

    def record_treatment(
        self, patient_id: str, level: int, active_afflictions: Iterable[str], now_tick: int
    ) -> int:
        """Upsert a record for every listed affliction. Returns the number written."""
        if not patient_id:
            return 0
        check_patient_id(patient_id)
        kinds = [kind for kind in active_afflictions if kind]
        if not kinds:
            return 0

        record = TreatmentRecord(
            treatment_level=self.config.clamp(level), recorded_at_tick=now_tick
        )
        for kind in kinds:
            self._records[AfflictionKey(patient_id=patient_id, affliction_kind=kind)] = record

        self.logger.debug(
            "treatment_recorded",
            patient_id=patient_id,
            level=record.treatment_level,
            afflictions=sorted(kinds),
            tick=now_tick,
        )
        return len(kinds)

    def try_get(self, patient_id: str, affliction_kind: str) -> TreatmentRecord | None:
        if not patient_id or not affliction_kind:
            return None
        key = AfflictionKey(patient_id=patient_id, affliction_kind=affliction_kind)
        return self._records.get(key)

    def meets_gate(
        self,
        patient_id: str | None,
        affliction_kind: str | None,
        required_level: int,
        gate_enabled: bool,
        patient_dead: bool = False,
    ) -> bool:
        """True when the forecast may be shown for this affliction."""
        if not gate_enabled:
            return True
        if not patient_id or patient_dead or not affliction_kind:
            return False

        record = self.try_get(patient_id, affliction_kind)
        if record is None:
            return False
        return record.treatment_level >= self.config.clamp(required_level)

    def clear_for(self, patient_id: str, affliction_kind: str) -> bool:
        key = AfflictionKey(patient_id=patient_id, affliction_kind=affliction_kind)
        return self._records.pop(key, None) is not None

    def cleanup_due(self, now_tick: int) -> bool:
        return now_tick - self.last_cleanup_tick >= self.config.cleanup_interval_ticks

    def mark_cleanup(self, now_tick: int) -> None:
        self.last_cleanup_tick = now_tick

    def run_periodic_cleanup(
        self, alive_census: set[str], active_affliction_check: ActiveAfflictionCheck
    ) -> int:
        """Drop records for dead/unknown patients and resolved afflictions."""
        if not self._records:
            return 0

        stale = [
            key
            for key in self._records
            if key.patient_id not in alive_census
            or not active_affliction_check(key.patient_id, key.affliction_kind)
        ]
        for key in stale:
            del self._records[key]

        self.logger.info("cleanup_completed", removed=len(stale), remaining=len(self._records))
        return len(stale)

    def clear(self) -> None:
        self._records.clear()
        self.last_cleanup_tick = 0

    def snapshot(self) -> TreatmentMemorySnapshot:
        return TreatmentMemorySnapshot(
            entries={
                encode_key(key): StoredTreatment(
                    lvl=record.treatment_level, tick=record.recorded_at_tick
                )
                for key, record in self._records.items()
            }
        )

    @classmethod
    def restore(
        cls, snapshot: TreatmentMemorySnapshot, config: TreatmentMemoryConfig | None = None
    ) -> "TreatmentMemory":
        memory = cls(config)
        for raw_key, stored in snapshot.entries.items():
            key = decode_key(raw_key)
            if not key.patient_id or not key.affliction_kind:
                memory.logger.warning("snapshot_entry_skipped", key=raw_key)
                continue
            memory._records[key] = TreatmentRecord(
                treatment_level=memory.config.clamp(stored.lvl), recorded_at_tick=stored.tick
            )
        return memory
