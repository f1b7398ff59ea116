# create_user.py
"""Create a user record and print a development access token for it.

Tokens in production come from the identity provider; the printed token is
signed with the local SECRET_KEY and is meant for manual testing.
"""
import asyncio

from lending.core.security import create_access_token
from lending.db.database import init_db
from lending.db.documents import UserDocument
from lending.models.user import UserRole


async def create_user():
    print("--- Create Lending User ---")
    try:
        client = await init_db()
    except Exception as e:
        print(f"Error connecting to database: {e}")
        return

    while True:
        username = input("Enter username: ").strip()
        if username:
            break
        print("Username cannot be empty.")

    existing_user = await UserDocument.find_one({"username": username})
    if existing_user:
        print(f"Error: Username '{username}' already exists.")
        client.close()
        return

    roles = ", ".join(r.value for r in UserRole)
    while True:
        role_value = (input(f"Enter role [{roles}] (default USER): ").strip() or UserRole.USER.value).upper()
        try:
            role = UserRole(role_value)
            break
        except ValueError:
            print(f"Unknown role '{role_value}'.")

    email = input("Enter email (optional, press Enter to skip): ").strip() or None
    full_name = input("Enter full name (optional, press Enter to skip): ").strip() or None

    user = UserDocument(username=username, email=email, full_name=full_name, role=role)
    try:
        await user.insert()
        print(f"User '{username}' created with role {role.value} (id {user.id}).")
        print(f"Development token: {create_access_token({'sub': username})}")
    except Exception as e:
        print(f"Error saving user to database: {e}")

    client.close()
    print("Database connection closed.")


if __name__ == "__main__":
    asyncio.run(create_user())
