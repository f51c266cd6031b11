"""Call Recording Ingest - Recording ingest service.

FastAPI service for call-log-with-recording ingestion (multipart + mobile
base64 JSON): normalization, content dedup, object storage, persistence.
"""

__all__: list[str] = []
