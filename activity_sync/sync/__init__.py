"""
Sync Module

Job ledger, bounded executor, fetch-and-normalize pipeline and the
orchestrator that fans a job type out across tenant configurations.
"""
