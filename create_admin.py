import sys
from urllib.parse import urlparse

import psycopg2

from app.core.config import settings
from app.core.enums import UserRole
from app.core.security import hash_password


def create_user(username: str, password: str, role: UserRole = UserRole.ADMIN, email: str | None = None) -> bool:
    try:
        db_url = urlparse(settings.DATABASE_URL.replace("postgresql+asyncpg://", "postgresql://"))

        conn = psycopg2.connect(
            host=db_url.hostname or "localhost",
            port=db_url.port or 5432,
            user=db_url.username or "postgres",
            password=db_url.password or "postgres",
            database=db_url.path.lstrip("/") or "postgres"
        )

        cursor = conn.cursor()

        cursor.execute("SELECT id FROM users WHERE username = %s", (username,))
        if cursor.fetchone():
            print(f"Error: User '{username}' already exists")
            cursor.close()
            conn.close()
            return False

        # Enum columns hold the member name
        cursor.execute(
            "INSERT INTO users (username, email, password_hash, role, created_at) "
            "VALUES (%s, %s, %s, %s, NOW()) RETURNING id",
            (username, email, hash_password(password), role.name)
        )

        user_id = cursor.fetchone()[0]
        conn.commit()

        print(f"User '{username}' created successfully")
        print(f"User ID: {user_id}")
        print(f"Role: {role}")

        cursor.close()
        conn.close()
        return True

    except psycopg2.Error as e:
        print(f"Error creating user: {e}")
        return False


def main():
    if len(sys.argv) < 3:
        print("Usage: python create_admin.py <username> <password> [admin|operator] [email]")
        sys.exit(1)

    username = sys.argv[1]
    password = sys.argv[2]
    role = UserRole(sys.argv[3]) if len(sys.argv) > 3 else UserRole.ADMIN
    email = sys.argv[4] if len(sys.argv) > 4 else None

    if not username or not password:
        print("Error: username and password cannot be empty")
        sys.exit(1)

    success = create_user(username, password, role, email)
    sys.exit(0 if success else 1)


if __name__ == "__main__":
    main()
