#!/usr/bin/env python3
"""Emit SQL that registers a machine module and its API key hash."""

from __future__ import annotations

import argparse
import hashlib
import secrets

DEFAULT_SCOPES = ("reconcile:write", "sync:read", "sync:write")


def _quote_sql(value: str) -> str:
    escaped = value.replace("'", "''")
    return f"'{escaped}'"


def hash_api_key(api_key: str) -> str:
    return hashlib.sha256(api_key.encode("utf-8")).hexdigest()


def render_sql(*, module_id: str, api_key: str, scopes: list[str]) -> str:
    module_value = _quote_sql(module_id)
    scopes_value = "array[" + ", ".join(_quote_sql(scope) for scope in scopes) + "]::text[]"
    key_hash_value = _quote_sql(hash_api_key(api_key))

    return f"""-- campaign-sync machine module registration
-- Run against the campaign-sync database with a privileged role.

insert into modules (module_id, scopes, enabled)
values ({module_value}, {scopes_value}, true)
on conflict (module_id) do update set scopes = excluded.scopes, enabled = true;

insert into module_credentials (module_id, key_hash, is_active)
select id, {key_hash_value}, true
from modules
where module_id = {module_value};
"""


def main() -> None:
    parser = argparse.ArgumentParser(description="Emit SQL to register a campaign-sync machine module.")
    parser.add_argument("--module-id", required=True, help="Value the caller sends as X-Module-Id")
    parser.add_argument("--api-key", default=None, help="API key to hash; a random one is generated when omitted")
    parser.add_argument(
        "--scope",
        action="append",
        dest="scopes",
        default=None,
        help="Scope to grant; repeat for several (default: all campaign-sync scopes)",
    )
    args = parser.parse_args()

    api_key = args.api_key or secrets.token_urlsafe(32)
    if not args.api_key:
        print(f"-- generated api key (store it now, only the hash is persisted): {api_key}")
    print(render_sql(module_id=args.module_id, api_key=api_key, scopes=args.scopes or list(DEFAULT_SCOPES)))


if __name__ == "__main__":
    main()
