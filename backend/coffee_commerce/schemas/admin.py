from pydantic import BaseModel


class SyncResult(BaseModel):
    product_id: str
    product_name: str
    stored_provider_id: str = ""
    actual_provider_id: str | None = None
    strategy: str | None = None  # stored_id, name_match, metadata_match, fuzzy_name
    match_score: int | None = None
    status: str = "not_found"  # ok, mismatch, not_found, error
    updated: bool = False
    error: str | None = None


class SyncSummary(BaseModel):
    ok: int = 0
    mismatches: int = 0
    not_found: int = 0
    errors: int = 0
    updated: int = 0


class SyncReport(BaseModel):
    total: int
    results: list[SyncResult]
    summary: SyncSummary


class HealthStatus(BaseModel):
    status: str
    total_products: int
    database: str
    provider: str
    last_reconciliation: dict | None = None
