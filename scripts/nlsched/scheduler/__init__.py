"""APScheduler daemon that runs the newsletter batch on an interval."""
