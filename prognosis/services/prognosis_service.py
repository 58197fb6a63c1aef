"""
Session-scoped facade the host calls into.

Combines the pieces behind the host's event points:
1. Treatment completed -> remember the doctor's skill per affliction
2. Evaluation pulse    -> de-duplicated at-risk alerts
3. Tooltip render      -> gated prognosis line
4. Tick                -> rate-limited sweep of stale treatment records

Every entry point is an error boundary: failures are logged and returned
as Result.err, never raised into the host.
"""

from collections.abc import Iterator
from contextlib import contextmanager

import structlog

from prognosis.config import AppConfig, PrognosisSettings, get_config
from prognosis.domain.models import AlertNotification, PatientSnapshot, Verdict
from prognosis.services.alerting import AlertDeduplicator
from prognosis.services.boundary import Result, configure_logging
from prognosis.services.forecaster import append_line, classify, prognosis_line
from prognosis.services.host import PrognosisHost
from prognosis.services.treatment_memory import TreatmentMemory, TreatmentMemorySnapshot

logger = structlog.get_logger(__name__)


class SessionClosedError(RuntimeError):
    """Raised (and returned as Result.err) when a closed session is called."""


class PrognosisService:
    """One instance per game session; owns the treatment memory and fired-alert set."""

    def __init__(self, host: PrognosisHost, config: AppConfig | None = None) -> None:
        self.host = host
        self.config = config or get_config()
        configure_logging(self.config.logging)
        self.settings: PrognosisSettings = self.config.prognosis
        self.memory = TreatmentMemory(self.config.memory)
        self.alerts = AlertDeduplicator()
        self.logger = logger.bind(component="prognosis_service")
        self._is_active = True

        self.logger.info(
            "prognosis_session_started",
            gate_enabled=self.settings.require_treatment_gate,
            required_level=self.settings.required_treatment_level,
            alert_enabled=self.settings.enable_risk_alert,
        )

    @property
    def is_active(self) -> bool:
        return self._is_active

    @contextmanager
    def session(self) -> Iterator["PrognosisService"]:
        """Scope the service to a game session; tears state down on exit."""
        try:
            yield self
        finally:
            self.close()

    def close(self) -> None:
        if not self._is_active:
            return
        self._is_active = False
        self.memory.clear()
        self.alerts.clear()
        self.logger.info("prognosis_session_ended")

    def update_settings(self, settings: PrognosisSettings) -> None:
        self.settings = settings
        self.logger.info(
            "settings_updated",
            gate_enabled=settings.require_treatment_gate,
            required_level=settings.required_treatment_level,
            alert_enabled=settings.enable_risk_alert,
            alert_percent=settings.risk_alert_severity_percent,
        )

    def _ensure_active(self) -> None:
        if not self._is_active:
            raise SessionClosedError("prognosis session is closed")

    def _gate_met(
        self, patient: PatientSnapshot, affliction_kind: str, settings: PrognosisSettings
    ) -> bool:
        return self.memory.meets_gate(
            patient.patient_id,
            affliction_kind,
            settings.required_treatment_level,
            settings.require_treatment_gate,
            patient_dead=patient.dead,
        )

    def _forecast(
        self, patient: PatientSnapshot, affliction_kind: str, settings: PrognosisSettings
    ) -> Verdict:
        if not self._gate_met(patient, affliction_kind, settings):
            return Verdict.NONE

        affliction = patient.affliction(affliction_kind)
        if affliction is None or affliction.fully_immune:
            return Verdict.NONE

        return classify(
            affliction.immunity,
            affliction.immunity_rate_per_day,
            affliction.severity,
            affliction.severity_rate_per_day,
        )

    def on_treatment_completed(
        self, patient_id: str, doctor_skill: int | None, succeeded: bool = True
    ) -> Result[int]:
        """Remember the doctor's skill against every active affliction on the patient."""
        try:
            self._ensure_active()
            if not succeeded:
                return Result.ok(0)

            patient = self.host.find_patient(patient_id)
            if patient is None or patient.dead:
                return Result.ok(0)

            level = doctor_skill if doctor_skill is not None else 0
            written = self.memory.record_treatment(
                patient.patient_id, level, patient.active_kinds(), self.host.current_tick()
            )
            return Result.ok(written)

        except Exception as e:
            self.logger.exception("treatment_record_failed", patient_id=patient_id, error=str(e))
            return Result.err(e)

    def on_evaluation_pulse(self, patient_id: str) -> Result[list[AlertNotification]]:
        """Fire at most one at-risk alert per affliction episode."""
        try:
            self._ensure_active()
            settings = self.settings
            if not settings.enable_risk_alert:
                return Result.ok([])

            patient = self.host.find_patient(patient_id)
            if patient is None:
                return Result.ok([])

            # Episode over: future infections may alert again
            self.alerts.reset_missing(patient, {a.kind for a in patient.afflictions})

            sent: list[AlertNotification] = []
            for affliction in patient.afflictions:
                notification = self.alerts.evaluate(
                    patient,
                    affliction,
                    gate_met=self._gate_met(patient, affliction.kind, settings),
                    threshold=settings.risk_alert_threshold,
                )
                if notification is None:
                    continue
                self.host.send_alert(notification)
                sent.append(notification)

            return Result.ok(sent)

        except Exception as e:
            self.logger.exception("evaluation_pulse_failed", patient_id=patient_id, error=str(e))
            return Result.err(e)

    def forecast(self, patient_id: str, affliction_kind: str) -> Result[Verdict]:
        """Gate-aware verdict; Verdict.NONE when there is nothing to show."""
        try:
            self._ensure_active()
            patient = self.host.find_patient(patient_id)
            if patient is None or not affliction_kind:
                return Result.ok(Verdict.NONE)
            return Result.ok(self._forecast(patient, affliction_kind, self.settings))

        except Exception as e:
            self.logger.exception(
                "forecast_failed",
                patient_id=patient_id,
                affliction_kind=affliction_kind,
                error=str(e),
            )
            return Result.err(e)

    def on_render_tooltip(
        self, patient_id: str, affliction_kind: str, text: str = ""
    ) -> Result[str]:
        """Append "Prognosis: <verdict>" to the affliction's tooltip text."""
        try:
            self._ensure_active()
            patient = self.host.find_patient(patient_id)
            if patient is None or not affliction_kind:
                return Result.ok(text)

            verdict = self._forecast(patient, affliction_kind, self.settings)
            return Result.ok(append_line(text, prognosis_line(verdict)))

        except Exception as e:
            self.logger.exception(
                "tooltip_render_failed",
                patient_id=patient_id,
                affliction_kind=affliction_kind,
                error=str(e),
            )
            return Result.err(e)

    def on_tick(self) -> Result[int]:
        """Sweep stale treatment records once the cleanup interval has elapsed."""
        try:
            self._ensure_active()
            now = self.host.current_tick()
            if not self.memory.cleanup_due(now):
                return Result.ok(0)
            self.memory.mark_cleanup(now)

            census = self.host.alive_patient_ids()
            patients: dict[str, PatientSnapshot | None] = {}

            def affliction_active(patient_id: str, affliction_kind: str) -> bool:
                if patient_id not in patients:
                    patients[patient_id] = self.host.find_patient(patient_id)
                patient = patients[patient_id]
                if patient is None or patient.dead:
                    return False
                affliction = patient.affliction(affliction_kind)
                return affliction is not None and not affliction.fully_immune

            removed = self.memory.run_periodic_cleanup(census, affliction_active)
            return Result.ok(removed)

        except Exception as e:
            self.logger.exception("periodic_cleanup_failed", error=str(e))
            return Result.err(e)

    def clear_for(self, patient_id: str, affliction_kind: str) -> Result[bool]:
        try:
            self._ensure_active()
            return Result.ok(self.memory.clear_for(patient_id, affliction_kind))
        except Exception as e:
            self.logger.exception("treatment_clear_failed", patient_id=patient_id, error=str(e))
            return Result.err(e)

    def save(self) -> Result[TreatmentMemorySnapshot]:
        """Treatment memory in save-file form. The fired-alert set is not saved."""
        try:
            self._ensure_active()
            return Result.ok(self.memory.snapshot())
        except Exception as e:
            self.logger.exception("treatment_memory_save_failed", error=str(e))
            return Result.err(e)

    def load(self, snapshot: TreatmentMemorySnapshot) -> Result[int]:
        """Replace the treatment memory with a saved one. Returns the record count."""
        try:
            self._ensure_active()
            self.memory = TreatmentMemory.restore(snapshot, self.config.memory)
            self.logger.info("treatment_memory_loaded", records=len(self.memory))
            return Result.ok(len(self.memory))
        except Exception as e:
            self.logger.exception("treatment_memory_load_failed", error=str(e))
            return Result.err(e)
