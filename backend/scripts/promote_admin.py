"""CLI script to grant or revoke the administrator role.
Usage: python scripts/promote_admin.py USERNAME [--revoke]
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `studygroups` imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from studygroups.database import engine, create_db_and_tables
from studygroups import models, repositories


def main(username: str, revoke: bool = False) -> int:
    """Set the role of `username` and print the outcome.

    Returns a process exit code: 0 on success, 1 if the user is unknown.
    """
    create_db_and_tables()
    role = models.UserRole.USER if revoke else models.UserRole.ADMINISTRATOR
    with Session(engine) as session:
        repo = repositories.UserRepository(session)
        user = repo.get_by_username(username)
        if not user:
            print(f'User not found: {username}')
            return 1
        repo.set_role(user, role.value)
        print(f'{username} is now {role.value}')
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('username', help='Existing username to update')
    parser.add_argument('--revoke', action='store_true', help='Demote the user back to a regular user')
    args = parser.parse_args()
    sys.exit(main(args.username, revoke=args.revoke))
