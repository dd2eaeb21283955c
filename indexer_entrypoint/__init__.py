"""
Container entrypoint for the blockchain indexer.

Resolves the runtime identity, prepares working directories, promotes the
staged index into the live data directory, fixes ownership, and execs the
indexer under the resolved identity.
"""
