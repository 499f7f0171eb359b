"""In-app notifications for document and risk workflow events."""
