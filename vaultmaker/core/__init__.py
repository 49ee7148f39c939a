"""Orchestration core: queue, ingestion tracker, retrieval index, scheduler."""
