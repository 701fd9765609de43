"""Docket: document-embedded tasks synchronized with a task store and CalDAV calendars."""
