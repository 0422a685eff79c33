"""donorscope: resumable donor-concentration analysis over paginated contribution records.

The engine pulls itemized contributions for one queued principal per invocation,
folds them into a durable checkpoint and, once the source is exhausted, writes a
compact reconciled final record.
"""
