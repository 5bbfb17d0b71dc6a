import argparse
import getpass
import sys

from simpus.core.db import SessionLocal, init as db_init
from simpus.core.exceptions import SimpusError
from simpus.core.policy import Role
from simpus.core.users import Users


def main():
    parser = argparse.ArgumentParser(description="Create a SIMPUS administrator account")
    parser.add_argument("--username", required=True)
    parser.add_argument("--fullname")
    parser.add_argument("--password", help="Prompted for when omitted")
    args = parser.parse_args()

    password = args.password or getpass.getpass("Password: ")
    session = SessionLocal()
    try:
        db_init()
        user = Users(session).register(
            args.username, password, fullname=args.fullname, role=Role.ADMIN)
        print(f"Success! Admin '{user.username}' created.")
    except SimpusError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        session.close()

if __name__ == "__main__":
    main()
