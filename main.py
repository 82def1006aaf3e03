"""
Lockbox - Main Entry Point

A command-line keystore that keeps secrets in a private GitHub repository.
Values are encrypted locally; GitHub only ever sees ciphertext.
"""

import os
import sys
import asyncio
import getpass
import logging
import argparse
from typing import Optional

import httpx

from auth import DeviceCode, DeviceFlowClient, installation_url
from config import Config, VERSION, list_profiles, read_active_profile, set_active_profile
from crypto.credential_vault import CredentialVault
from errors import LockboxError, NotFound
from keystore import generate_value, init_repository, open_keystore, rotate_password
from store.paths import display_path, secret_path

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def setup_logging() -> None:
    """Log to stderr so stdout only carries command output."""
    level_name = os.environ.get("LOCKBOX_LOG_LEVEL", "WARNING").upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


# ============================================================================
# Prompts
# ============================================================================

def prompt_password(message: str) -> str:
    return getpass.getpass(f"{message}: ")


def prompt_yes_no(message: str) -> bool:
    answer = input(f"{message} (y/n): ")
    return answer.strip().lower() in ("y", "yes")


def prompt_new_password(label: str = "master password") -> str:
    """Ask for a new password twice until both entries match."""
    while True:
        first = prompt_password(f"Set {label}")
        if len(first) < MIN_PASSWORD_LENGTH:
            print(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.", file=sys.stderr)
            continue
        second = prompt_password(f"Confirm {label}")
        if first == second:
            return first
        print("Passwords do not match. Please try again.", file=sys.stderr)


def _show_device_code(code: DeviceCode) -> None:
    print(f"Please visit: {code.verification_uri}")
    print(f"And enter code: {code.user_code}")


# ============================================================================
# Commands
# ============================================================================

async def cmd_login(config: Config, args, transport=None) -> int:
    vault = CredentialVault(config)
    if vault.exists():
        if not prompt_yes_no("You are already logged in. Do you want to re-authenticate?"):
            print("Login cancelled.")
            return 0

    client = DeviceFlowClient(config, transport=transport)
    token = await client.authenticate(_show_device_code)
    print("Successfully authenticated!")
    print("Please ensure the GitHub App is installed to grant repository access:")
    print(installation_url(config))

    if vault.has_lmk:
        password = prompt_password("Enter master password")
    else:
        print("Setting up master password to secure your token locally...")
        password = prompt_new_password()
    vault.bootstrap(password)
    vault.store_token(token, password)

    if read_active_profile(config.home) is None:
        set_active_profile(config, config.profile)
    print(f"Token secured for profile '{config.profile}'.")
    return 0


async def cmd_logout(config: Config, args, transport=None) -> int:
    if CredentialVault(config).logout():
        print(f"Logged out of profile '{config.profile}'.")
        return 0
    print(f"Profile '{config.profile}' is not logged in.", file=sys.stderr)
    return 1


async def cmd_init(config: Config, args, transport=None) -> int:
    password = prompt_password("Enter master password")
    created = await init_repository(config, password, args.repo, transport=transport)
    if created:
        print(f"Created private repository '{args.repo}'.")
    else:
        print(f"Using existing repository '{args.repo}'.")
    print("Configuration saved.")
    return 0


async def cmd_store(config: Config, args, transport=None) -> int:
    secret_path(args.key, args.category)  # fail fast on bad names
    shown = display_path(args.key, args.category)

    password = prompt_password("Enter master password")
    keystore = await open_keystore(config, password, transport=transport)
    async with keystore:
        if await keystore.exists(args.key, args.category):
            if not prompt_yes_no(f"Key '{shown}' already exists. Do you want to update it?"):
                print("Update cancelled.")
                return 0

        value = args.value
        if value is None:
            value = generate_value()
            print(f"\nGenerated value: {value}")
            print(f"   (Length: {len(value)} characters)\n")
            if not prompt_yes_no("Do you want to use this generated value?"):
                print("Operation cancelled.")
                return 0

        await keystore.store_value(args.key, value, args.category)
    print(f"Key '{shown}' stored successfully.")
    return 0


async def cmd_get(config: Config, args, transport=None) -> int:
    secret_path(args.key, args.category)
    shown = display_path(args.key, args.category)

    password = prompt_password("Enter master password")
    keystore = await open_keystore(config, password, transport=transport)
    async with keystore:
        value = await keystore.get(args.key, args.category, version=args.version)

    if value is None:
        suffix = f" at version {args.version}" if args.version else ""
        raise NotFound(f"Key '{shown}' not found{suffix}.")
    print(value)
    return 0


async def cmd_delete(config: Config, args, transport=None) -> int:
    secret_path(args.key, args.category)
    shown = display_path(args.key, args.category)

    password = prompt_password("Enter master password")
    keystore = await open_keystore(config, password, transport=transport)
    async with keystore:
        if not await keystore.exists(args.key, args.category):
            raise NotFound(f"Key '{shown}' not found.")
        if not args.yes and not prompt_yes_no(f"Are you sure you want to delete key '{shown}'?"):
            print("Deletion cancelled.")
            return 0
        deleted = await keystore.delete(args.key, args.category)

    if not deleted:
        raise NotFound(f"Key '{shown}' not found.")
    print(f"Key '{shown}' deleted successfully.")
    return 0


async def cmd_history(config: Config, args, transport=None) -> int:
    secret_path(args.key, args.category)
    shown = display_path(args.key, args.category)

    password = prompt_password("Enter master password")
    keystore = await open_keystore(config, password, transport=transport)
    async with keystore:
        entries = await keystore.history(args.key, args.category, args.page, args.page_size)

    if not entries:
        if args.page == 1:
            raise NotFound(f"No history found for key '{shown}'.")
        print("No more entries.")
        return 0
    for entry in entries:
        print(f"{entry.version}  {entry.timestamp}  {entry.message}")
    return 0


async def cmd_list(config: Config, args, transport=None) -> int:
    password = prompt_password("Enter master password")
    keystore = await open_keystore(config, password, transport=transport)
    async with keystore:
        categories, keys = await keystore.list(args.category)

    for category in categories:
        print(f"{category}/")
    for key in keys:
        print(key)
    return 0


async def cmd_reset_password(config: Config, args, transport=None) -> int:
    old_password = prompt_password("Enter current master password")
    new_password = prompt_new_password("new master password")
    await rotate_password(config, old_password, new_password, transport=transport)
    print("Master password changed successfully.")
    return 0


async def cmd_profile(config: Config, args, transport=None) -> int:
    if args.profile_command == "use":
        set_active_profile(config, args.name)
        print(f"Switched to profile '{args.name}'.")
    elif args.profile_command == "current":
        print(config.profile)
    else:
        active = read_active_profile(config.home)
        for name in list_profiles(config):
            marker = "*" if name == active else " "
            print(f"{marker} {name}")
    return 0


COMMANDS = {
    "login": cmd_login,
    "logout": cmd_logout,
    "init": cmd_init,
    "store": cmd_store,
    "get": cmd_get,
    "delete": cmd_delete,
    "history": cmd_history,
    "list": cmd_list,
    "reset-password": cmd_reset_password,
    "profile": cmd_profile,
}


# ============================================================================
# Main Entry Point
# ============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="lockbox",
        description="A secure, GitHub-backed keystore.",
    )
    parser.add_argument("--version", action="version", version=f"lockbox {VERSION}")
    parser.add_argument("--profile", "-p", help="Profile to use (default: active profile)")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("login", help="Authenticate with GitHub")
    subparsers.add_parser("logout", help="Forget the stored GitHub token")

    init_parser = subparsers.add_parser("init", help="Initialize the storage repository on GitHub")
    init_parser.add_argument("--repo", "-r", default=None, help="Repository to use/create")

    store_parser = subparsers.add_parser("store", help="Store a key-value pair securely")
    store_parser.add_argument("--key", "-k", required=True, help="The name of the key")
    store_parser.add_argument(
        "--value", "-v", help="The value to store (generated if omitted)"
    )
    store_parser.add_argument("--category", "-c", help="Optional category path, e.g. 'api/prod'")

    get_parser = subparsers.add_parser("get", help="Retrieve a stored value")
    get_parser.add_argument("key", help="The name of the key")
    get_parser.add_argument("--category", "-c", help="Optional category path")
    get_parser.add_argument("--version", dest="version", help="Version from 'history'")

    delete_parser = subparsers.add_parser("delete", help="Delete a stored key")
    delete_parser.add_argument("key", help="The name of the key")
    delete_parser.add_argument("--category", "-c", help="Optional category path")
    delete_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    history_parser = subparsers.add_parser("history", help="Show the change history of a key")
    history_parser.add_argument("key", help="The name of the key")
    history_parser.add_argument("--category", "-c", help="Optional category path")
    history_parser.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    history_parser.add_argument("--page-size", type=int, default=10, help="Entries per page")

    list_parser = subparsers.add_parser("list", help="List keys and categories")
    list_parser.add_argument("--category", "-c", help="Optional category path")

    subparsers.add_parser("reset-password", help="Change the master password")

    profile_parser = subparsers.add_parser("profile", help="Manage profiles")
    profile_sub = profile_parser.add_subparsers(dest="profile_command")
    profile_sub.add_parser("list", help="List profiles")
    profile_sub.add_parser("current", help="Show the profile in use")
    use_parser = profile_sub.add_parser("use", help="Switch the active profile")
    use_parser.add_argument("name", help="Profile name")

    return parser


def main(argv: Optional[list[str]] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging()

    try:
        config = Config.from_env(args.profile)
        if args.command == "init" and args.repo is None:
            args.repo = config.default_repo
        return asyncio.run(COMMANDS[args.command](config, args, transport=transport))
    except LockboxError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except (KeyboardInterrupt, EOFError):
        print("\nCancelled.", file=sys.stderr)
        return 1


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
