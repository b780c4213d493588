"""Payroll service business logic."""
