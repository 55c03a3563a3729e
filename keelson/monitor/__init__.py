"""Run status — a read-only projection over the Run Ledger.

Modules
-------
projection
    ``RunProjection`` reads the ledger and produces ``RunSnapshot``
    models, a frozen point-in-time view of a pipeline run.
renderer
    ``RunRenderer`` turns snapshots and finished runs into Rich output.
"""
