"""
User Repository - users and roles
"""
from typing import Optional
from app.domain.user import User, Role
from app.core.database import get_db_connection_dict


USER_COLUMNS = """
    id, email, name, role, is_active, password_hash, last_login_at, created_at
"""


class UserRepository:

    def find_by_id(self, user_id: int) -> Optional[User]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {USER_COLUMNS}
                FROM users
                WHERE id = %s AND deleted_at IS NULL
            """, (user_id,))
            row = cursor.fetchone()
            return User(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_by_email(self, email: str) -> Optional[User]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute(f"""
                SELECT {USER_COLUMNS}
                FROM users
                WHERE LOWER(email) = LOWER(%s) AND deleted_at IS NULL
            """, (email,))
            row = cursor.fetchone()
            return User(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def touch_last_login(self, user_id: int):
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("UPDATE users SET last_login_at = NOW() WHERE id = %s", (user_id,))
            conn.commit()

        except Exception:
            conn.rollback()
            raise

        finally:
            cursor.close()
            conn.close()

    def find_role_by_id(self, role_id: int) -> Optional[Role]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id, name, description, permissions
                FROM roles
                WHERE id = %s
            """, (role_id,))
            row = cursor.fetchone()
            return Role(**row) if row else None

        finally:
            cursor.close()
            conn.close()

    def find_role_by_name(self, name: str) -> Optional[Role]:
        conn = get_db_connection_dict()
        cursor = conn.cursor()

        try:
            cursor.execute("""
                SELECT id, name, description, permissions
                FROM roles
                WHERE name = %s
            """, (name,))
            row = cursor.fetchone()
            return Role(**row) if row else None

        finally:
            cursor.close()
            conn.close()
