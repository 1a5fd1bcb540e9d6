"""Transcript source adapters.

FirefliesTranscriptProvider lists and fetches meeting transcripts from the
Fireflies.ai GraphQL API and renders sentences as timestamped speaker
lines.
"""
