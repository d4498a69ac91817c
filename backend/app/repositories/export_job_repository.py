"""
Export Job Repository
"""
from datetime import datetime
from typing import Optional
from psycopg2.extras import Json
from app.domain.export_job import ExportJob
from app.core.database import get_db_connection_dict


EXPORT_JOB_COLUMNS = """
    id, store_id, user_id, export_type, status, filters, estimated_rows,
    file_url, error, created_at, completed_at
"""


class ExportJobRepository:

    def create(self, store_id: int, user_id: int, export_type: str, filters: dict,
               estimated_rows: int) -> ExportJob:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                INSERT INTO export_jobs (store_id, user_id, export_type, status, filters, estimated_rows)
                VALUES (%s, %s, %s, 'pending', %s, %s)
                RETURNING {EXPORT_JOB_COLUMNS}
            """, (store_id, user_id, export_type, Json(filters), estimated_rows))
            row = cursor.fetchone()
            conn.commit()
            return ExportJob(**row)

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def find_by_id(self, job_id: int, user_id: Optional[int] = None) -> Optional[ExportJob]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            query = f"SELECT {EXPORT_JOB_COLUMNS} FROM export_jobs WHERE id = %s"
            params = [job_id]
            if user_id is not None:
                query += " AND user_id = %s"
                params.append(user_id)
            cursor.execute(query, params)
            row = cursor.fetchone()
            return ExportJob(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def update_status(
        self,
        job_id: int,
        status: str,
        file_url: Optional[str] = None,
        error: Optional[str] = None,
        completed_at: Optional[datetime] = None,
        only_if_status: Optional[tuple] = None
    ) -> bool:
        """
        Set the job status. With only_if_status the update applies only
        while the job is in one of those states.
        """
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            query = """
                UPDATE export_jobs
                SET status = %s, file_url = COALESCE(%s, file_url), error = %s,
                    completed_at = COALESCE(%s, completed_at)
                WHERE id = %s
            """
            params = [status, file_url, error, completed_at, job_id]
            if only_if_status:
                query += " AND status = ANY(%s)"
                params.append(list(only_if_status))
            cursor.execute(query, params)
            updated = cursor.rowcount > 0
            conn.commit()
            return updated

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()
