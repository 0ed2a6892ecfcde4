"""HRMS backend service."""
