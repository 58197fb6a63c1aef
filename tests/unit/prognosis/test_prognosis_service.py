"""
Tests for the session facade the host calls into.

Uses the in-memory ward as the host so the full path (treatment event,
evaluation pulse, tooltip render, tick) is exercised without mocks.
"""

import logging
from collections.abc import Iterator

import pytest
import structlog

from adapters.ward.domain import InMemoryWard, WardPatient
from prognosis.config import AppConfig, LoggingConfig, PrognosisSettings
from prognosis.domain.models import AlertNotification, PatientSnapshot, Verdict
from prognosis.services.boundary import configure_logging
from prognosis.services.prognosis_service import PrognosisService, SessionClosedError
from prognosis.services.treatment_memory import TreatmentMemorySnapshot


@pytest.fixture
def config() -> AppConfig:
    return AppConfig(
        prognosis=PrognosisSettings(required_treatment_level=12, risk_alert_severity_percent=80)
    )


@pytest.fixture
def ward() -> InMemoryWard:
    return InMemoryWard()


@pytest.fixture
def service(ward: InMemoryWard, config: AppConfig) -> PrognosisService:
    return PrognosisService(ward, config)


@pytest.fixture
def doctor(ward: InMemoryWard) -> WardPatient:
    return ward.admit("Doc", medicine_skill=14)


@pytest.fixture
def patient(ward: InMemoryWard) -> WardPatient:
    patient = ward.admit("Ada")
    ward.infect(
        patient.patient_id,
        "Plague",
        severity=0.85,
        severity_rate_per_day=0.3,
        immunity=0.1,
        immunity_rate_per_day=0.02,
        label="plague",
    )
    return patient


class FailingHost(InMemoryWard):
    """Host whose lookups blow up, to exercise the error boundaries."""

    def find_patient(self, patient_id: str) -> PatientSnapshot | None:
        raise RuntimeError("host exploded")


class TestTreatmentCompleted:
    def test_records_all_active_afflictions(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        ward.infect(patient.patient_id, "Flu")
        ward.tick = 700

        result = ward.tend(service, doctor.patient_id, patient.patient_id)

        assert result.unwrap() == 2
        record = service.memory.try_get(patient.patient_id, "Flu")
        assert record is not None
        assert record.treatment_level == 14
        assert record.recorded_at_tick == 700

    def test_fully_immune_afflictions_are_skipped(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        ward.infect(patient.patient_id, "Flu", immunity=1.0)

        assert ward.tend(service, doctor.patient_id, patient.patient_id).unwrap() == 1
        assert service.memory.try_get(patient.patient_id, "Flu") is None

    def test_failed_treatment_is_ignored(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        result = ward.tend(service, doctor.patient_id, patient.patient_id, succeeded=False)

        assert result.unwrap() == 0
        assert len(service.memory) == 0

    def test_missing_doctor_skill_records_level_zero(
        self, service: PrognosisService, patient: WardPatient
    ) -> None:
        service.on_treatment_completed(patient.patient_id, None)

        record = service.memory.try_get(patient.patient_id, "Plague")
        assert record is not None
        assert record.treatment_level == 0

    def test_unknown_patient_is_noop(self, service: PrognosisService) -> None:
        assert service.on_treatment_completed("Thing_Human999", 20).unwrap() == 0


class TestTooltip:
    def test_gated_out_until_skilled_treatment(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        tooltip = service.on_render_tooltip(patient.patient_id, "Plague", "Plague")
        assert tooltip.unwrap() == "Plague"

        ward.tend(service, doctor.patient_id, patient.patient_id)

        text = service.on_render_tooltip(patient.patient_id, "Plague", "Plague").unwrap()
        assert text == "Plague\nPrognosis: At risk"

    def test_unskilled_treatment_does_not_unlock(
        self, ward: InMemoryWard, service: PrognosisService, patient: WardPatient
    ) -> None:
        novice = ward.admit("Novice", medicine_skill=5)
        ward.tend(service, novice.patient_id, patient.patient_id)

        assert service.forecast(patient.patient_id, "Plague").unwrap() is Verdict.NONE

    def test_gate_disabled_shows_forecast_without_treatment(
        self, service: PrognosisService, patient: WardPatient
    ) -> None:
        service.update_settings(PrognosisSettings(require_treatment_gate=False))

        assert service.forecast(patient.patient_id, "Plague").unwrap() is Verdict.AT_RISK

    def test_fully_immune_affliction_has_no_line(
        self, ward: InMemoryWard, service: PrognosisService, patient: WardPatient
    ) -> None:
        service.update_settings(PrognosisSettings(require_treatment_gate=False))
        ward.infect(patient.patient_id, "Flu", immunity=1.0)

        assert service.on_render_tooltip(patient.patient_id, "Flu", "Flu").unwrap() == "Flu"

    def test_unknown_patient_or_kind_leaves_text(
        self, service: PrognosisService, patient: WardPatient
    ) -> None:
        service.update_settings(PrognosisSettings(require_treatment_gate=False))

        assert service.on_render_tooltip("Thing_Human999", "Plague", "x").unwrap() == "x"
        assert service.on_render_tooltip(patient.patient_id, "", "x").unwrap() == "x"
        assert service.on_render_tooltip(patient.patient_id, "Flu", "x").unwrap() == "x"


class TestEvaluationPulse:
    def test_alert_fires_once_and_reaches_host(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        ward.tend(service, doctor.patient_id, patient.patient_id)

        first = service.on_evaluation_pulse(patient.patient_id).unwrap()
        second = service.on_evaluation_pulse(patient.patient_id).unwrap()

        assert [n.title for n in first] == ["At risk: Ada - Plague"]
        assert second == []
        assert ward.letters == first

    def test_no_alert_without_gate(
        self, ward: InMemoryWard, service: PrognosisService, patient: WardPatient
    ) -> None:
        assert service.on_evaluation_pulse(patient.patient_id).unwrap() == []
        assert ward.letters == []

    def test_alerts_disabled(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        service.update_settings(PrognosisSettings(enable_risk_alert=False))
        ward.tend(service, doctor.patient_id, patient.patient_id)

        assert service.on_evaluation_pulse(patient.patient_id).unwrap() == []

    def test_recurrence_rearms(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        ward.tend(service, doctor.patient_id, patient.patient_id)
        assert len(service.on_evaluation_pulse(patient.patient_id).unwrap()) == 1

        ward.cure(patient.patient_id, "Plague")
        assert service.on_evaluation_pulse(patient.patient_id).unwrap() == []

        ward.infect(patient.patient_id, "Plague", severity=0.9, severity_rate_per_day=0.3,
                    immunity_rate_per_day=0.02)
        assert len(service.on_evaluation_pulse(patient.patient_id).unwrap()) == 1
        assert len(ward.letters) == 2

    def test_gate_toggle_rearms(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        ward.tend(service, doctor.patient_id, patient.patient_id)
        assert len(service.on_evaluation_pulse(patient.patient_id).unwrap()) == 1

        # Requirement raised above the recorded level: gate no longer met
        service.update_settings(PrognosisSettings(required_treatment_level=20))
        assert service.on_evaluation_pulse(patient.patient_id).unwrap() == []

        service.update_settings(PrognosisSettings(required_treatment_level=12))
        assert len(service.on_evaluation_pulse(patient.patient_id).unwrap()) == 1

    def test_dead_patient_never_alerts(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        ward.tend(service, doctor.patient_id, patient.patient_id)
        ward.kill(patient.patient_id)

        assert service.on_evaluation_pulse(patient.patient_id).unwrap() == []


class TestPeriodicCleanup:
    def test_not_due_before_interval(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        ward.tend(service, doctor.patient_id, patient.patient_id)
        ward.discharge(patient.patient_id)
        ward.tick = 2499

        assert service.on_tick().unwrap() == 0
        assert len(service.memory) == 1

    def test_sweeps_departed_and_resolved(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        other = ward.admit("Bea")
        ward.infect(other.patient_id, "Flu")
        ward.infect(patient.patient_id, "Flu")
        ward.tend(service, doctor.patient_id, patient.patient_id)
        ward.tend(service, doctor.patient_id, other.patient_id)
        assert len(service.memory) == 3

        ward.discharge(other.patient_id)
        ward.cure(patient.patient_id, "Flu")
        ward.tick = 2500

        assert service.on_tick().unwrap() == 2
        assert service.forecast(other.patient_id, "Flu").unwrap() is Verdict.NONE
        assert service.memory.try_get(patient.patient_id, "Plague") is not None

    def test_dead_patients_are_swept(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        ward.tend(service, doctor.patient_id, patient.patient_id)
        ward.kill(patient.patient_id)
        ward.tick = 5000

        assert service.on_tick().unwrap() == 1

    def test_clear_for(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        ward.tend(service, doctor.patient_id, patient.patient_id)

        assert service.clear_for(patient.patient_id, "Plague").unwrap() is True
        assert service.forecast(patient.patient_id, "Plague").unwrap() is Verdict.NONE


class TestErrorBoundaries:
    @pytest.fixture
    def failing_service(self, config: AppConfig) -> PrognosisService:
        return PrognosisService(FailingHost(), config)

    def test_failures_are_returned_not_raised(self, failing_service: PrognosisService) -> None:
        results = [
            failing_service.on_treatment_completed("Thing_Human1", 10),
            failing_service.on_evaluation_pulse("Thing_Human1"),
            failing_service.on_render_tooltip("Thing_Human1", "Flu", "Flu"),
            failing_service.forecast("Thing_Human1", "Flu"),
        ]

        assert all(result.is_err() for result in results)
        assert all("host exploded" in str(result.unwrap_err()) for result in results)

    def test_cleanup_failure_is_returned_and_records_kept(self, config: AppConfig) -> None:
        host = FailingHost(start_tick=2500)
        patient = host.admit("Ada")
        service = PrognosisService(host, config)
        service.memory.record_treatment(patient.patient_id, 14, {"Flu"}, now_tick=0)

        result = service.on_tick()

        assert result.is_err()
        assert "host exploded" in str(result.unwrap_err())
        assert service.memory.try_get(patient.patient_id, "Flu") is not None

    def test_clear_for_invalid_input_is_returned(self, service: PrognosisService) -> None:
        result = service.clear_for(None, "Flu")  # type: ignore[arg-type]
        assert result.is_err()

    def test_separator_in_patient_id_fails_at_treatment_not_at_save(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        ward.patients.pop(patient.patient_id)
        patient.patient_id = "Thing|Human9"
        ward.patients[patient.patient_id] = patient

        result = service.on_treatment_completed(patient.patient_id, doctor.medicine_skill)

        assert isinstance(result.unwrap_err(), ValueError)
        assert len(service.memory) == 0
        assert service.save().unwrap().entries == {}

    def test_save_failure_is_returned(
        self, service: PrognosisService, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def explode() -> TreatmentMemorySnapshot:
            raise ValueError("unencodable key")

        monkeypatch.setattr(service.memory, "snapshot", explode)

        result = service.save()
        assert result.is_err()
        assert "unencodable key" in str(result.unwrap_err())

    def test_alert_delivery_failure_is_contained(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient, monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        ward.tend(service, doctor.patient_id, patient.patient_id)

        def explode(notification: AlertNotification) -> None:
            raise ConnectionError("letter stack unavailable")

        monkeypatch.setattr(ward, "send_alert", explode)

        result = service.on_evaluation_pulse(patient.patient_id)
        assert result.is_err()
        assert isinstance(result.unwrap_err(), ConnectionError)


class TestSessionLifecycle:
    def test_session_tears_down_state(
        self, ward: InMemoryWard, service: PrognosisService, doctor: WardPatient,
        patient: WardPatient,
    ) -> None:
        with service.session() as active:
            ward.tend(active, doctor.patient_id, patient.patient_id)
            active.on_evaluation_pulse(patient.patient_id)
            assert len(active.memory) == 1
            assert len(active.alerts) == 1

        assert not service.is_active
        assert len(service.memory) == 0
        assert len(service.alerts) == 0

        result = service.on_evaluation_pulse(patient.patient_id)
        assert isinstance(result.unwrap_err(), SessionClosedError)

    def test_save_and_load_restores_gate_but_not_alerts(
        self, ward: InMemoryWard, config: AppConfig, service: PrognosisService,
        doctor: WardPatient, patient: WardPatient,
    ) -> None:
        ward.tend(service, doctor.patient_id, patient.patient_id)
        service.on_evaluation_pulse(patient.patient_id)
        raw = service.save().unwrap().model_dump_json()
        saved = TreatmentMemorySnapshot.model_validate_json(raw)

        reloaded = PrognosisService(ward, config)
        assert reloaded.load(saved).unwrap() == 1

        assert reloaded.forecast(patient.patient_id, "Plague").unwrap() is Verdict.AT_RISK
        # Fired set is process-local, so the restarted session may alert again
        assert len(reloaded.on_evaluation_pulse(patient.patient_id).unwrap()) == 1

    def test_save_and_load_on_closed_session_are_errors(self, service: PrognosisService) -> None:
        service.close()

        assert isinstance(service.save().unwrap_err(), SessionClosedError)
        assert isinstance(service.load(TreatmentMemorySnapshot()).unwrap_err(), SessionClosedError)


class TestLoggingConfiguration:
    @pytest.fixture(autouse=True)
    def restore_logging(self) -> Iterator[None]:
        yield
        configure_logging()

    def test_session_applies_configured_renderer_and_level(
        self, ward: InMemoryWard, caplog: pytest.LogCaptureFixture
    ) -> None:
        config = AppConfig(logging=LoggingConfig(level="ERROR", format="console"))

        PrognosisService(ward, config)

        assert isinstance(structlog.get_config()["processors"][-1], structlog.dev.ConsoleRenderer)
        assert logging.getLogger().level == logging.ERROR
        assert "prognosis_session_started" not in caplog.text

    def test_json_at_info_emits_session_start(
        self, ward: InMemoryWard, caplog: pytest.LogCaptureFixture
    ) -> None:
        PrognosisService(ward, AppConfig(logging=LoggingConfig(level="INFO", format="json")))

        renderer = structlog.get_config()["processors"][-1]
        assert isinstance(renderer, structlog.processors.JSONRenderer)
        assert "prognosis_session_started" in caplog.text
