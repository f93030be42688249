# Services package init
"""
CreditShare Backend - Services Layer
=====================================

Service Inventory:
    - BlobStore / LocalBlobStore: durable file contents (abstract + local disk)
    - LedgerService: balances and the credit transaction log
    - UserService: get-or-create of users by external identity
    - CatalogService: listings and downloader-set membership
    - UploadService: blob write, catalog record, upload reward
    - DownloadService: the download gate (charge once, then free)
    - IssueService: issue reports from users who downloaded a file

Services receive the session factory and their collaborators in their
constructors; create_app() wires them once and stores them on app.state.
"""
