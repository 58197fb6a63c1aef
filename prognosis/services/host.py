"""
Host adapter protocol.

The simulation implements this and calls into PrognosisService from its own
event points (treatment completed, health tick, tooltip render). Nothing in
this package depends on how the host dispatches those events.
"""

from typing import Protocol

from prognosis.domain.models import AlertNotification, PatientSnapshot


class PrognosisHost(Protocol):
    """
    Read-only view of the host simulation plus the alert delivery channel.

    Why Protocol over ABC: structural typing, test doubles need no base class.
    """

    def current_tick(self) -> int:
        """Monotonic simulation tick counter."""
        ...

    def alive_patient_ids(self) -> set[str]:
        """Every living patient across active and inactive contexts."""
        ...

    def find_patient(self, patient_id: str) -> PatientSnapshot | None:
        """Current snapshot of a patient, or None when the host no longer knows them."""
        ...

    def send_alert(self, notification: AlertNotification) -> None:
        """Deliver an alert. Fire-and-forget."""
        ...
