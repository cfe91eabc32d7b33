"""Payroll payrun and loan amortization engine."""

__version__ = "0.1.0"
