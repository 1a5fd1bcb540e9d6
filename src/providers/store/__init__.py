"""Document and chunk persistence.

SQLiteDocumentStore keeps documents, chunks (with float32 embedding
blobs), chunk relationships, extracted entities, the webhook event log and
system metadata in one aiosqlite database (data/transcripts.db by default).
"""
