"""
MzansiCare Queue Service

A FastAPI-based virtual queueing service for South African clinics, with
a facility directory, patient accounts, feedback and lightweight triage
helpers.
"""

__version__ = "1.0.0"
