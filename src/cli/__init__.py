"""Command-line tools for the transcript ingestion core.

- ``python -m src.cli.ingest`` (or ``python -m src.cli``): sync transcripts,
  run queue workers, search the index, and inspect statistics.
"""
