"""
Tests for the job queue, worker pool and ingestion pipeline.
"""
