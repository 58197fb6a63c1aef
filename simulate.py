"""
Ward simulation exercising the full prognosis pipeline.

This script walks through:
1. Configuration loading and validation
2. Treatment gating (unskilled vs. skilled doctor)
3. Tooltip forecasts as afflictions progress
4. De-duplicated at-risk alerts and re-arming
5. Periodic cleanup and save/load of the treatment memory

Run with: uv run python simulate.py
"""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from adapters.ward.domain import InMemoryWard
from prognosis.config import AppConfig, get_config, print_config_summary
from prognosis.domain.models import TICKS_PER_DAY
from prognosis.services.boundary import configure_logging
from prognosis.services.prognosis_service import PrognosisService

console = Console()


def _new_ward(config: AppConfig) -> tuple[InMemoryWard, PrognosisService]:
    ward = InMemoryWard()
    config = config.model_copy(update={"logging": get_config().logging})
    return ward, PrognosisService(ward, config)


def check_configuration() -> bool:
    """Load configuration from the environment and print it."""

    console.print(Panel("Configuration", style="blue"))
    try:
        print_config_summary(get_config())
        return True
    except Exception as e:
        console.print(f"Configuration failed: {e}", style="red")
        return False


def check_treatment_gate() -> bool:
    """An unskilled tend must not unlock the forecast; a skilled one must."""

    console.print(Panel("Treatment Gate", style="blue"))
    config = AppConfig()
    ward, service = _new_ward(config)

    novice = ward.admit("Novice", medicine_skill=3)
    surgeon = ward.admit("Surgeon", medicine_skill=15)
    patient = ward.admit("Ada")
    ward.infect(patient.patient_id, "Flu", severity=0.2, severity_rate_per_day=0.1)

    ward.tend(service, novice.patient_id, patient.patient_id)
    before = service.on_render_tooltip(patient.patient_id, "Flu", "Flu").unwrap()

    ward.tend(service, surgeon.patient_id, patient.patient_id)
    after = service.on_render_tooltip(patient.patient_id, "Flu", "Flu").unwrap()

    table = Table(title="Tooltip before/after skilled tend")
    table.add_column("Doctor", style="cyan")
    table.add_column("Tooltip", style="white")
    table.add_row(f"{novice.label} (3)", before.replace("\n", " | "))
    table.add_row(f"{surgeon.label} (15)", after.replace("\n", " | "))
    console.print(table)

    return before == "Flu" and after.startswith("Flu\nPrognosis: ")


def check_forecast_progression() -> bool:
    """Print the verdict for a few rate combinations as days pass."""

    console.print(Panel("Forecast Progression", style="blue"))
    config = AppConfig(prognosis={"require_treatment_gate": False})
    ward, service = _new_ward(config)

    cases = [
        ("Plague", 0.05, 0.30, 0.02),
        ("Flu", 0.20, 0.05, 0.10),
        ("Malaria", 0.10, 0.00, 0.00),
        ("Infection", 0.40, -0.10, 0.20),
    ]
    patients = {}
    for kind, severity, sev_rate, imm_rate in cases:
        patient = ward.admit(f"{kind} patient")
        ward.infect(
            patient.patient_id,
            kind,
            severity=severity,
            severity_rate_per_day=sev_rate,
            immunity_rate_per_day=imm_rate,
        )
        patients[kind] = patient.patient_id

    table = Table(title="Verdicts by day")
    table.add_column("Day", style="cyan")
    for kind, *_ in cases:
        table.add_column(kind, style="magenta")

    for day in range(4):
        row = [str(day)]
        for kind, *_ in cases:
            verdict = service.forecast(patients[kind], kind).unwrap()
            row.append(verdict.label or "-")
        table.add_row(*row)
        ward.advance(TICKS_PER_DAY)

    console.print(table)
    return True


def check_risk_alerts() -> bool:
    """A losing race past the threshold alerts once, and again after recurrence."""

    console.print(Panel("Risk Alerts", style="blue"))
    config = AppConfig(prognosis={"risk_alert_severity_percent": 50})
    ward, service = _new_ward(config)

    doctor = ward.admit("Doc", medicine_skill=18)
    patient = ward.admit("Bea")
    ward.infect(patient.patient_id, "Plague", severity=0.3, severity_rate_per_day=0.3,
                immunity_rate_per_day=0.05, label="plague")
    ward.tend(service, doctor.patient_id, patient.patient_id)

    first = ward.run(service, TICKS_PER_DAY, patient_ids=[patient.patient_id])
    ward.cure(patient.patient_id, "Plague")
    ward.run(service, 250, patient_ids=[patient.patient_id])

    ward.infect(patient.patient_id, "Plague", severity=0.6, severity_rate_per_day=0.3,
                immunity_rate_per_day=0.05, label="plague")
    ward.tend(service, doctor.patient_id, patient.patient_id)
    second = ward.run(service, 1000, patient_ids=[patient.patient_id])

    for letter in ward.letters:
        console.print(f"[red]{letter.title}[/red]: {letter.body}")

    return len(first) == 1 and len(second) == 1


def check_cleanup_and_save() -> bool:
    """Records for departed patients are swept; the rest survive a save/load."""

    console.print(Panel("Cleanup & Save", style="blue"))
    config = AppConfig(memory={"cleanup_interval_ticks": 2500})
    ward, service = _new_ward(config)

    doctor = ward.admit("Doc", medicine_skill=14)
    staying = ward.admit("Cy")
    leaving = ward.admit("Dee")
    for patient in (staying, leaving):
        ward.infect(patient.patient_id, "Flu", severity_rate_per_day=0.01)
        ward.tend(service, doctor.patient_id, patient.patient_id)

    ward.discharge(leaving.patient_id)
    ward.advance(2500)
    removed = service.on_tick().unwrap()

    snapshot = service.save().unwrap()
    console.print(snapshot.model_dump_json(indent=2))

    restored = PrognosisService(ward, config)
    restored.load(snapshot)

    return removed == 1 and restored.save().unwrap() == snapshot


def run_all_checks() -> None:
    console.print(Panel("Prognosis Monitor - Ward Simulation", style="bold blue"))

    checks = [
        ("Configuration", check_configuration),
        ("Treatment Gate", check_treatment_gate),
        ("Forecast Progression", check_forecast_progression),
        ("Risk Alerts", check_risk_alerts),
        ("Cleanup & Save", check_cleanup_and_save),
    ]

    results = []
    for name, check in checks:
        console.print(f"\n{'=' * 60}")
        try:
            results.append((name, check()))
        except Exception as e:
            console.print(f"{name} failed with exception: {e}", style="red")
            results.append((name, False))

    console.print(f"\n{'=' * 60}")
    summary_table = Table(title="Simulation Summary")
    summary_table.add_column("Check", style="cyan")
    summary_table.add_column("Result", style="white")

    passed = 0
    for name, ok in results:
        summary_table.add_row(name, "PASSED" if ok else "FAILED")
        passed += int(ok)

    console.print(summary_table)
    console.print(f"\nResults: {passed}/{len(results)} checks passed")


if __name__ == "__main__":
    configure_logging(get_config().logging)
    try:
        run_all_checks()
    except KeyboardInterrupt:
        console.print("\nSimulation stopped by user", style="yellow")
