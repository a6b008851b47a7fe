"""
Stripe ID Reconciler

Walks every local product and re-discovers its Stripe product, trying in
order: the stored id, an exact name match, the original_product_id metadata
marker, then fuzzy name matching against the full Stripe catalog. Stale ids
are rewritten and every product gets a row in the report.
"""
import logging
import string
from typing import Iterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coffee_commerce.database import utcnow
from coffee_commerce.errors import SyncFailedError
from coffee_commerce.metrics import ReconcileMetrics, reconcile_metrics
from coffee_commerce.models import Product
from coffee_commerce.schemas.admin import SyncReport, SyncResult, SyncSummary
from coffee_commerce.services.provider import (
    ProviderClient,
    ProviderError,
    ProviderNotFoundError,
    ProviderProduct,
)

logger = logging.getLogger(__name__)

FUZZY_MATCH_THRESHOLD = 70
METADATA_MARKER_KEY = "original_product_id"

STATUS_OK = "ok"
STATUS_MISMATCH = "mismatch"
STATUS_NOT_FOUND = "not_found"
STATUS_ERROR = "error"


def _words(text: str) -> list[str]:
    """Whitespace-separated words, casefolded, with leading and trailing punctuation removed."""
    words = (word.strip(string.punctuation) for word in text.casefold().split())
    return [word for word in words if word]


def name_match_score(name: str, candidate: str) -> int:
    """
    Score how well two product names match, 0-100.

    Examples:
        "Kenya AA", " kenya aa " -> 100
        "Kenya AA", "Kenya AA Peaberry" -> 80 (containment)
        "Ethiopia Yirgacheffe Natural", "Ethiopia Yirgacheffe (Natural)" -> 100
        "Kenya AA-Peaberry", "Kenya AA Peaberry" -> 33 (hyphenated words stay whole)
        "Colombia Huila Washed", "Colombia Narino Washed" -> 66
    """
    left = name.strip().casefold()
    right = candidate.strip().casefold()
    if not left or not right:
        return 0
    if left == right:
        return 100
    if left in right or right in left:
        return 80

    left_words = _words(left)
    right_words = _words(right)
    if not left_words or not right_words:
        return 0
    shared = len(set(left_words) & set(right_words))
    return shared * 100 // max(len(left_words), len(right_words))


def find_fuzzy_match(
    name: str,
    candidates: list[ProviderProduct],
    threshold: int = FUZZY_MATCH_THRESHOLD,
) -> Optional[tuple[ProviderProduct, int]]:
    """Best-scoring candidate, or None when nothing reaches the threshold. Ties keep the first."""
    best = None
    best_score = -1
    for candidate in candidates:
        score = name_match_score(name, candidate.name)
        if score > best_score:
            best, best_score = candidate, score
    if best is None or best_score < threshold:
        return None
    return best, best_score


class Reconciler:
    def __init__(
        self,
        db: Session,
        provider: ProviderClient,
        page_size: int = 100,
        metrics: Optional[ReconcileMetrics] = None,
    ):
        self.db = db
        self.provider = provider
        self.page_size = page_size
        self.metrics = metrics or reconcile_metrics

    def _iter_products(self) -> Iterator[Product]:
        """All products, including inactive and archived, in creation order."""
        offset = 0
        while True:
            page = (
                self.db.query(Product)
                .order_by(Product.created_at, Product.id)
                .offset(offset)
                .limit(self.page_size)
                .all()
            )
            if not page:
                return
            yield from page
            if len(page) < self.page_size:
                return
            offset += len(page)

    def _find_match(
        self, product: Product, catalog: list[ProviderProduct]
    ) -> tuple[Optional[ProviderProduct], Optional[str], Optional[int]]:
        if product.provider_id:
            try:
                return self.provider.get_product(product.provider_id), "stored_id", None
            except ProviderNotFoundError:
                logger.info(f"Stored Stripe id {product.provider_id} for {product.name!r} no longer exists")

        match = self.provider.find_product_by_name(product.name, candidates=catalog)
        if match:
            return match, "name_match", None

        match = self.provider.find_product_by_metadata(METADATA_MARKER_KEY, str(product.id), candidates=catalog)
        if match:
            return match, "metadata_match", None

        fuzzy = find_fuzzy_match(product.name, catalog)
        if fuzzy:
            return fuzzy[0], "fuzzy_name", fuzzy[1]
        return None, None, None

    def _reconcile(self, product: Product, catalog: list[ProviderProduct]) -> SyncResult:
        stored = product.provider_id or ""
        result = SyncResult(
            product_id=str(product.id),
            product_name=product.name,
            stored_provider_id=stored,
        )

        try:
            match, strategy, score = self._find_match(product, catalog)
        except ProviderError as e:
            result.status = STATUS_ERROR
            result.error = str(e)
            return result

        if match is None:
            result.status = STATUS_NOT_FOUND
            return result

        result.actual_provider_id = match.id
        result.strategy = strategy
        result.match_score = score
        if match.id == stored:
            result.status = STATUS_OK
            return result

        result.status = STATUS_MISMATCH
        try:
            product.provider_id = match.id
            product.updated_at = utcnow()
            self.db.commit()
            result.updated = True
        except SQLAlchemyError as e:
            self.db.rollback()
            result.error = f"Failed to update provider id: {e}"
        return result

    def sync_provider_ids(self) -> SyncReport:
        try:
            catalog = self.provider.list_all_products()
        except ProviderError as e:
            raise SyncFailedError(f"Failed to list Stripe products: {e}") from e

        summary = SyncSummary()
        results = []
        for product in self._iter_products():
            result = self._reconcile(product, catalog)
            results.append(result)
            self.metrics.results.labels(status=result.status).inc()

            if result.status == STATUS_OK:
                summary.ok += 1
            elif result.status == STATUS_MISMATCH:
                summary.mismatches += 1
                if result.updated:
                    summary.updated += 1
                logger.info(
                    f"Product {result.product_name!r}: {result.stored_provider_id or '-'} -> "
                    f"{result.actual_provider_id} via {result.strategy} (updated={result.updated})"
                )
            elif result.status == STATUS_NOT_FOUND:
                summary.not_found += 1
                logger.info(f"Product {result.product_name!r}: no Stripe product found")
            else:
                summary.errors += 1
                logger.error(f"Product {result.product_name!r}: {result.error}")

        logger.info(
            f"Stripe id sync finished: {len(results)} products, {summary.ok} ok, "
            f"{summary.mismatches} mismatches, {summary.not_found} not found, "
            f"{summary.errors} errors, {summary.updated} updated"
        )
        return SyncReport(total=len(results), results=results, summary=summary)
