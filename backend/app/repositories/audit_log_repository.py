"""
Audit Log Repository

Besides regular audit entries, the table stores idempotency claims:
one row per (action, entity_id) enforced by a partial unique index.
"""
import json
from datetime import datetime
from functools import partial
from typing import List, Optional, Tuple
from psycopg2.extras import Json
from app.domain.audit import AuditLog
from app.core.database import get_db_connection_dict


# Changes may carry Decimals and datetimes
_dumps = partial(json.dumps, default=str)


AUDIT_COLUMNS = """
    id, store_id, user_id, actor_email, action, entity_type, entity_id,
    changes, metadata, ip_address, created_at
"""


class AuditLogRepository:

    def create(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[str] = None,
        store_id: Optional[int] = None,
        user_id: Optional[int] = None,
        actor_email: Optional[str] = None,
        changes: Optional[dict] = None,
        metadata: Optional[dict] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> int:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO audit_logs (
                    store_id, user_id, actor_email, action, entity_type, entity_id,
                    changes, metadata, ip_address, user_agent
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING id
            """, (
                store_id, user_id, actor_email, action, entity_type,
                str(entity_id) if entity_id is not None else None,
                Json(changes, dumps=_dumps) if changes is not None else None,
                Json(metadata, dumps=_dumps) if metadata is not None else None,
                ip_address, user_agent,
            ))
            log_id = cursor.fetchone()['id']
            conn.commit()
            return log_id

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def find_all(
        self,
        store_id: Optional[int] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        user_id: Optional[int] = None,
        action: Optional[str] = None,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
        exclude_actions: Tuple[str, ...] = (),
        limit: int = 50,
        offset: int = 0
    ) -> Tuple[List[AuditLog], int]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            conditions = []
            params = []

            if store_id is not None:
                conditions.append("store_id = %s")
                params.append(store_id)
            if entity_type:
                conditions.append("entity_type = %s")
                params.append(entity_type)
            if entity_id:
                conditions.append("entity_id = %s")
                params.append(str(entity_id))
            if user_id is not None:
                conditions.append("user_id = %s")
                params.append(user_id)
            if action:
                conditions.append("action = %s")
                params.append(action)
            if date_from:
                conditions.append("created_at >= %s")
                params.append(date_from)
            if date_to:
                conditions.append("created_at <= %s")
                params.append(date_to)
            if exclude_actions:
                conditions.append("NOT (action = ANY(%s))")
                params.append(list(exclude_actions))

            where_clause = " AND ".join(conditions) if conditions else "1=1"

            cursor.execute(f"SELECT COUNT(*) as total FROM audit_logs WHERE {where_clause}", params)
            total = cursor.fetchone()['total']

            cursor.execute(f"""
                SELECT {AUDIT_COLUMNS}
                FROM audit_logs
                WHERE {where_clause}
                ORDER BY created_at DESC, id DESC
                LIMIT %s OFFSET %s
            """, params + [limit, offset])

            return [AuditLog(**row) for row in cursor.fetchall()], total

        finally:
            cursor.close()
            conn.close()

    # ------------------------------------------------------------------
    # Idempotency claims
    # ------------------------------------------------------------------

    def insert_claim(self, action: str, key: str, entity_type: str, changes: dict) -> bool:
        """
        Atomically create the claim row.

        Returns:
            True if this call created it, False if the key was already claimed
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO audit_logs (action, entity_type, entity_id, changes)
                VALUES (%s, %s, %s, %s)
                ON CONFLICT (action, entity_id)
                    WHERE action IN ('WEBHOOK_IDEMPOTENCY', 'REQUEST_IDEMPOTENCY')
                DO NOTHING
                RETURNING id
            """, (action, entity_type, key, Json(changes, dumps=_dumps)))
            created = cursor.fetchone() is not None
            conn.commit()
            return created

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def find_claim(self, action: str, key: str) -> Optional[dict]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id, entity_type, entity_id, changes, created_at
                FROM audit_logs
                WHERE action = %s AND entity_id = %s
            """, (action, key))
            return cursor.fetchone()

        finally:
            cursor.close()
            conn.close()

    def update_claim(self, action: str, key: str, changes: dict) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE audit_logs SET changes = %s
                WHERE action = %s AND entity_id = %s
            """, (Json(changes, dumps=_dumps), action, key))
            updated = cursor.rowcount > 0
            conn.commit()
            return updated

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def reclaim_stale(self, action: str, key: str, stale_before: datetime, changes: dict) -> bool:
        """
        Take over a claim still 'processing' since before stale_before.
        Refreshes created_at so the new holder gets a full time box.
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                UPDATE audit_logs
                SET changes = %s, created_at = NOW()
                WHERE action = %s AND entity_id = %s
                  AND changes->>'status' = 'processing'
                  AND created_at < %s
                RETURNING id
            """, (Json(changes, dumps=_dumps), action, key, stale_before))
            reclaimed = cursor.fetchone() is not None
            conn.commit()
            return reclaimed

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def delete_claim(self, action: str, key: str) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                "DELETE FROM audit_logs WHERE action = %s AND entity_id = %s",
                (action, key)
            )
            deleted = cursor.rowcount > 0
            conn.commit()
            return deleted

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def delete_claims_before(self, action: str, cutoff: datetime) -> int:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                "DELETE FROM audit_logs WHERE action = %s AND created_at < %s",
                (action, cutoff)
            )
            deleted = cursor.rowcount
            conn.commit()
            return deleted

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()
