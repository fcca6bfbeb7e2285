"""
Recurring health reminders: recurrence engine, lifecycle coordination,
notification scheduling and the HTTP surface.
"""
