"""
Standalone jobs that run outside the FastAPI process.

Usage:
    python -m services.tripcrew.jobs.sweep_once
    python -m services.tripcrew.jobs.sweep_once --at 2026-05-01T09:00:00+00:00
"""
