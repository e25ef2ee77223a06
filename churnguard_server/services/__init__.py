"""Services package: ingestion, scoring, prediction caching and background recompute."""
