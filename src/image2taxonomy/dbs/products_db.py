"""
products_db.py

Persistence for classification outcomes on the catalog's `products` table.

The worker only ever issues one statement per outcome: a conditional UPDATE
that assigns a column only when the result payload carries that key, so
fields absent from a result keep their previous value.
"""

import os
import sys
from contextlib import contextmanager
from typing import Optional, Union

import psycopg2

from image2taxonomy.exception import ConfigurationError, StoreError
from image2taxonomy.logger import get_logger
from image2taxonomy.models import ClassificationResult, ProcessingStatus

logger = get_logger(__name__)

UPDATE_STATUS_SQL = """
    UPDATE products
    SET processing_status = %(status)s,
        title = CASE WHEN %(payload)s::json->>'title' IS NOT NULL THEN %(payload)s::json->>'title' ELSE title END,
        description = CASE WHEN %(payload)s::json->>'description' IS NOT NULL THEN %(payload)s::json->>'description' ELSE description END,
        taxonomy = CASE WHEN %(payload)s::json->>'taxonomy' IS NOT NULL THEN %(payload)s::json->>'taxonomy' ELSE taxonomy END,
        violations = CASE WHEN %(payload)s::json->>'violations' IS NOT NULL THEN (%(payload)s::json->'violations')::jsonb ELSE violations END,
        error_message = CASE WHEN %(payload)s::json->>'error_message' IS NOT NULL THEN %(payload)s::json->>'error_message' ELSE error_message END,
        updated_at = NOW()
    WHERE id = %(id)s
"""


class ProductsDB:
    """
    Store adapter for product rows.
    """

    def __init__(self, conn_str: Optional[str] = None):
        self.conn_str = conn_str or os.getenv("DATABASE_URL")
        if not self.conn_str:
            raise ConfigurationError("Database connection string (DATABASE_URL) not found.")
        logger.info("Initialized ProductsDB (Postgres).")

    @contextmanager
    def _get_connection(self):
        """Connection that commits on success, rolls back on error, and always closes."""
        conn = psycopg2.connect(self.conn_str)
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def ensure_schema(self):
        """Creates the products table if it doesn't exist (normally owned by the catalog app)."""
        try:
            with self._get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute('''
                        CREATE TABLE IF NOT EXISTS products (
                            id BIGSERIAL PRIMARY KEY,
                            title VARCHAR,
                            description TEXT,
                            taxonomy VARCHAR,
                            processing_status VARCHAR DEFAULT 'pending',
                            violations JSONB DEFAULT '{}'::jsonb,
                            error_message TEXT,
                            created_at TIMESTAMP NOT NULL DEFAULT NOW(),
                            updated_at TIMESTAMP NOT NULL DEFAULT NOW()
                        )
                    ''')
            logger.debug("Products schema verified.")
        except psycopg2.Error as e:
            logger.error("Failed to initialize products schema.")
            raise StoreError(e, sys)

    def update_status(
        self,
        record_id: int,
        status: Union[ProcessingStatus, str],
        result: Optional[ClassificationResult] = None,
    ) -> int:
        """
        Set processing_status and the columns present in result.

        Returns the number of rows updated (0 when the product is gone).
        """
        status = ProcessingStatus(status)
        payload = result.to_json() if result is not None else "{}"

        try:
            with self._get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute(UPDATE_STATUS_SQL, {"status": status.value, "payload": payload, "id": record_id})
                    updated = cur.rowcount
        except psycopg2.Error as e:
            logger.error(f"Failed to update product {record_id} to '{status.value}': {e}")
            raise StoreError(f"DB update failed for product {record_id}: {e}")

        if updated == 0:
            logger.warning(f"Product {record_id} not found; status '{status.value}' not recorded")
        else:
            logger.debug(f"Product {record_id} -> {status.value}: {payload}")
        return updated
