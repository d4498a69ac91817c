"""
UserStore Repository - store memberships and their role permissions
"""
from typing import List, Optional
from app.domain.store import Membership
from app.core.database import get_db_connection_dict


MEMBERSHIP_SELECT = """
    SELECT
        us.id, us.user_id, us.store_id, us.role_id, us.is_active, us.created_at,
        r.name as role_name, r.permissions,
        u.email as user_email, u.name as user_name,
        s.name as store_name
    FROM user_stores us
    JOIN roles r ON r.id = us.role_id
    JOIN users u ON u.id = us.user_id
    JOIN stores s ON s.id = us.store_id
"""


class UserStoreRepository:
    """Repository for user-store memberships"""

    @staticmethod
    def _map_row(row: dict) -> Membership:
        return Membership(
            id=row['id'],
            user_id=row['user_id'],
            store_id=row['store_id'],
            role_id=row['role_id'],
            role_name=row.get('role_name'),
            permissions=row.get('permissions') or [],
            is_active=row['is_active'],
            user_email=row.get('user_email'),
            user_name=row.get('user_name'),
            store_name=row.get('store_name'),
            created_at=row.get('created_at')
        )

    def find_membership(self, user_id: int, store_id: int) -> Optional[Membership]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(MEMBERSHIP_SELECT + """
                WHERE us.user_id = %s AND us.store_id = %s AND s.deleted_at IS NULL
            """, (user_id, store_id))

            row = cursor.fetchone()
            return self._map_row(row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_by_user(self, user_id: int) -> List[Membership]:
        """All memberships of a user, oldest first"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(MEMBERSHIP_SELECT + """
                WHERE us.user_id = %s AND s.deleted_at IS NULL
                ORDER BY us.created_at, us.id
            """, (user_id,))

            return [self._map_row(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def find_by_store(self, store_id: int) -> List[Membership]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(MEMBERSHIP_SELECT + """
                WHERE us.store_id = %s
                ORDER BY us.created_at, us.id
            """, (store_id,))

            return [self._map_row(row) for row in cursor.fetchall()]

        finally:
            cursor.close()
            conn.close()

    def create(self, user_id: int, store_id: int, role_id: int) -> int:
        """Insert a membership and return its id"""
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                INSERT INTO user_stores (user_id, store_id, role_id, is_active)
                VALUES (%s, %s, %s, TRUE)
                RETURNING id
            """, (user_id, store_id, role_id))
            membership_id = cursor.fetchone()['id']
            conn.commit()
            return membership_id

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def update(self, user_id: int, store_id: int, role_id: Optional[int] = None,
               is_active: Optional[bool] = None) -> bool:
        set_clauses = ["updated_at = NOW()"]
        params = []

        if role_id is not None:
            set_clauses.append("role_id = %s")
            params.append(role_id)
        if is_active is not None:
            set_clauses.append("is_active = %s")
            params.append(is_active)

        params.extend([user_id, store_id])

        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                UPDATE user_stores
                SET {', '.join(set_clauses)}
                WHERE user_id = %s AND store_id = %s
            """, params)
            updated = cursor.rowcount > 0
            conn.commit()
            return updated

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def delete(self, user_id: int, store_id: int) -> bool:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(
                "DELETE FROM user_stores WHERE user_id = %s AND store_id = %s",
                (user_id, store_id)
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
