"""
Project documents with version history.

- Uploading a file whose name matches an existing document in the project appends a version
- Exactly one version per document is the latest; restore moves the flag, no bytes move
- Every version keeps the storage provider it was written with
- Mutations are recorded to the append-only audit trail
"""
