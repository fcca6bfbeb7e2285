"""HealthPath reminder service: recurring health-adherence reminders and their notifications."""

__version__ = "0.1.0"
