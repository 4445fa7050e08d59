#!/usr/bin/env python3
"""
VulnWatch -- device inventory and partner sync engine, command-line entry point.

Usage:
  python main.py sync                 Sync every due integration once (cron entrypoint)
  python main.py sync --force         Sync every integration regardless of syncEvery
  python main.py status               List integrations with their latest sync outcome
  python main.py enrich               Refresh EPSS / CISA KEV data and priority (daily cron)
  python main.py enrich --id 12       Refresh one vulnerability
  python main.py create-user alice --role admin --password 's3cret'

Environment variables (or .env):
  DATABASE_URL        Inventory database (default sqlite:///vulnwatch_inventory.db)
  AUTH_DATABASE_URL   Users and API keys (default sqlite:///vulnwatch_auth.db)
  SECRET_KEY          Required unless DEBUG=true
"""

import argparse
import getpass
import logging
import sys

from sqlalchemy.exc import IntegrityError

from auth.models import ROLE_ADMIN, ROLE_USER, User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import Settings, get_settings
from inventory.errors import NotFoundError
from inventory.store import InventoryStore
from sync.enrichment import VulnerabilityEnricher
from sync.reconciler import build_reconciler
from sync.scheduler import SyncScheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def _cmd_sync(args: argparse.Namespace, settings: Settings) -> int:
    store = InventoryStore(settings.database_url)
    try:
        reconciler = build_reconciler(
            store,
            history_limit=settings.sync_history_limit,
            resolver_workers=settings.resolver_workers,
        )
        scheduler = SyncScheduler(
            store,
            reconciler,
            reconciler.bookkeeper,
            page_size=settings.partner_page_size,
            timeout=settings.partner_timeout_seconds,
            max_pages=settings.partner_max_pages,
        )
        runs = scheduler.run_due(force=args.force)
    finally:
        store.close()

    if not runs:
        print("  No integrations due.")
        return 0
    failed = 0
    for run in runs:
        if run.error:
            failed += 1
            print(f"  [!] {run.name} (#{run.integration_id}): {run.error}")
        elif run.result.should_retry:
            failed += 1
            print(
                f"  [!] {run.name} (#{run.integration_id}): stopped after "
                f"{run.result.created_items_count} created / {run.result.updated_items_count} updated: "
                f"{run.result.message}"
            )
        else:
            print(
                f"  {run.name} (#{run.integration_id}): "
                f"{run.result.created_items_count} created, {run.result.updated_items_count} updated"
            )
    return 1 if failed else 0


def _cmd_status(args: argparse.Namespace, settings: Settings) -> int:
    store = InventoryStore(settings.database_url)
    try:
        reconciler = build_reconciler(store, history_limit=settings.sync_history_limit)
        integrations = store.list_integrations().items
        if not integrations:
            print("  No integrations registered.")
            return 0
        print(f"  {'ID':>4}  {'NAME':<30} {'KIND':<15} {'EVERY':>7}  LAST SYNC")
        for integration in sorted(integrations, key=lambda i: i.id):
            latest = reconciler.bookkeeper.latest(integration.id)
            if latest is None:
                last = "never"
            else:
                last = f"{latest.synced_at} {latest.status}"
                if latest.error_message:
                    last += f" ({latest.error_message})"
            print(
                f"  {integration.id:>4}  {integration.name[:30]:<30} {integration.resource_type:<15} "
                f"{integration.sync_every:>6}s  {last}"
            )
    finally:
        store.close()
    return 0


def _cmd_enrich(args: argparse.Namespace, settings: Settings) -> int:
    store = InventoryStore(settings.database_url)
    try:
        enricher = VulnerabilityEnricher(store)
        if args.id is not None:
            try:
                outcomes = [enricher.enrich(args.id)]
            except NotFoundError as exc:
                print(f"  [!] {exc}")
                return 1
        else:
            outcomes = enricher.enrich_all()
    finally:
        store.close()

    if not outcomes:
        print("  No vulnerabilities with a CVE id.")
        return 0
    for outcome in outcomes:
        if outcome.skipped:
            print(f"  #{outcome.vulnerability_id}: no CVE id, skipped")
            continue
        epss = "n/a" if outcome.epss is None else f"{outcome.epss:.3f}"
        kev = "KEV" if outcome.in_kev else "-"
        print(f"  {outcome.cve_id:<18} epss={epss:<6} {kev:<3}  {outcome.priority}")
    return 0


def _cmd_create_user(args: argparse.Namespace, settings: Settings) -> int:
    password = args.password
    if args.prompt_password:
        password = getpass.getpass("Password: ")
    user = User(
        username=args.username,
        role=args.role,
        hashed_password=hash_password(password) if password else None,
    )
    user_store = UserStore(settings.auth_database_url)
    try:
        user_id, _, raw_key = user_store.create_user_with_key(user, "cli bootstrap key")
    except IntegrityError:
        print(f"  [!] User '{args.username}' already exists.")
        return 1
    finally:
        user_store.close()
    print(f"  Created {args.role} '{args.username}' (#{user_id}).")
    print(f"  API key (shown once): {raw_key}")
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="vulnwatch",
        description="VulnWatch inventory sync engine.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sync_parser = sub.add_parser("sync", help="Run one scheduler pass over due integrations")
    sync_parser.add_argument("--force", action="store_true", help="Sync every integration, due or not")
    sync_parser.set_defaults(handler=_cmd_sync)

    status_parser = sub.add_parser("status", help="Show integrations and their latest sync outcome")
    status_parser.set_defaults(handler=_cmd_status)

    enrich_parser = sub.add_parser("enrich", help="Look up EPSS and CISA KEV status and recompute priorities")
    enrich_parser.add_argument("--id", type=int, help="Only this vulnerability id")
    enrich_parser.set_defaults(handler=_cmd_enrich)

    user_parser = sub.add_parser("create-user", help="Create a user and print an API key for it")
    user_parser.add_argument("username")
    user_parser.add_argument("--role", choices=[ROLE_ADMIN, ROLE_USER], default=ROLE_USER)
    password_group = user_parser.add_mutually_exclusive_group()
    password_group.add_argument("--password", help="Password for POST /api/v1/auth/token logins")
    password_group.add_argument("--prompt-password", action="store_true", help="Read the password from the terminal")
    user_parser.set_defaults(handler=_cmd_create_user)

    args = parser.parse_args(argv)
    return args.handler(args, get_settings())


if __name__ == "__main__":
    sys.exit(main())
