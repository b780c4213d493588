"""HTTP API for the payroll service."""
