from __future__ import annotations

import argparse
from datetime import datetime, timedelta

import jwt

KNOWN_ROLES = ("admin", "recruiter", "candidate")


def parse_roles(raw: str) -> list[str]:
    roles = [item.strip() for item in raw.split(",") if item.strip()]
    unknown = sorted(set(roles) - set(KNOWN_ROLES))
    if unknown:
        raise SystemExit(f"unknown role(s): {', '.join(unknown)}; expected {', '.join(KNOWN_ROLES)}")
    if not roles:
        raise SystemExit("at least one role is required")
    return roles


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Mint a bearer token for the recruitment pipeline API (testing and ops use)."
    )
    parser.add_argument("--secret", required=True)
    parser.add_argument("--subject", required=True, help="User id the token acts as.")
    parser.add_argument("--roles", default="admin", help="Comma-separated: admin, recruiter, candidate.")
    parser.add_argument("--minutes", type=int, default=720)
    parser.add_argument("--algorithm", default="HS256")
    args = parser.parse_args()

    payload = {
        "sub": args.subject,
        "roles": parse_roles(args.roles),
        "exp": datetime.utcnow() + timedelta(minutes=args.minutes),
    }
    print(jwt.encode(payload, args.secret, algorithm=args.algorithm))


if __name__ == "__main__":
    main()
