"""Durable task queue.

SQLiteTaskQueue stores processing tasks next to the documents they refer
to and hands them out under time-limited leases, so a crashed worker's
task becomes claimable again once its lease expires.
"""
