"""Payroll service: compensation timelines, monthly proration and payroll runs."""

__version__ = "0.1.0"
