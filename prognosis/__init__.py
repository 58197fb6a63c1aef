"""Prognosis forecasting for host simulations.

This package contains the forecasting logic, treatment memory and alert
de-duplication, isolated from the host behind the PrognosisHost protocol.
"""
