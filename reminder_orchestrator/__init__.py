"""Payment Reminder Orchestrator

This service drives outbound payment-collection reminders:
- Syncs customers and invoices from the accounting system
- Builds per-invoice reminder schedules from account cadence settings
- Dispatches due reminders by SMS or voice inside the account call window
- Tracks delivery outcomes from provider callbacks and schedules retries
"""

__version__ = "1.0.0"
