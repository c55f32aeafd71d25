#!/usr/bin/env python3
"""Emit deterministic SQL that grants a newsroom role to a Supabase auth user."""

from __future__ import annotations

import argparse


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def render_sql(*, role: str, user_id: str | None, email: str | None, username: str | None) -> str:
    role_value = _quote_sql(role)

    if user_id:
        target_where = f"id = {_quote_sql(user_id)}::uuid"
    else:
        assert email is not None
        target_where = f"email = {_quote_sql(email)}"

    statements = [
        "update auth.users",
        f"set raw_app_meta_data = coalesce(raw_app_meta_data, '{{}}'::jsonb) || jsonb_build_object('role', {role_value})",
        f"where {target_where};",
    ]
    if username:
        statements += [
            "",
            "update auth.users",
            "set raw_app_meta_data = coalesce(raw_app_meta_data, '{}'::jsonb)"
            f" || jsonb_build_object('username', {_quote_sql(username)})",
            f"where {target_where};",
        ]

    body = "\n".join(statements)
    return f"""-- Newsroom role bootstrap SQL
-- Run this in the Supabase SQL editor (or equivalent privileged Postgres session).

{body}
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to grant a newsroom role to a Supabase user.")
    parser.add_argument(
        "--role",
        choices=["journalist", "curator"],
        default="journalist",
        help="Role to assign in auth.users.raw_app_meta_data.role",
    )
    identity_group = parser.add_mutually_exclusive_group(required=True)
    identity_group.add_argument("--user-id", help="Supabase auth.users id (UUID)")
    identity_group.add_argument("--email", help="Supabase auth.users email")
    parser.add_argument(
        "--username",
        default=None,
        help="Username stored in raw_app_meta_data; used as the content owner",
    )
    args = parser.parse_args()

    print(
        render_sql(
            role=args.role,
            user_id=args.user_id,
            email=args.email,
            username=args.username,
        )
    )


if __name__ == "__main__":
    main()
