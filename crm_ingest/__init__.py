"""CRM event ingestion service."""
