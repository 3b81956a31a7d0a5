"""
Newsletter Scheduler

Evaluates recurring newsletter definitions, renders due newsletters into
email-safe HTML and hands them to the Mailer service as templates and jobs.
"""

__version__ = "1.0.0"
