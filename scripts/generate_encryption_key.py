#!/usr/bin/env python3
"""Generate a Fernet key for encrypting integration credentials at rest.

Usage:
    python scripts/generate_encryption_key.py
    python scripts/generate_encryption_key.py --encrypt 'client-secret-value'

Store the key in the ENCRYPTION_KEY environment variable. Secret values that
are Fernet tokens are decrypted with it when the pipeline resolves them.
"""

import argparse

from rich.console import Console

from creative_export.core.utils.encryption import encrypt_secret, generate_encryption_key

console = Console()


def main():
    parser = argparse.ArgumentParser(description="Generate an integration credential encryption key")
    parser.add_argument("--key", help="Existing key to encrypt with instead of generating one")
    parser.add_argument("--encrypt", metavar="VALUE", help="Encrypt a credential with the key")
    args = parser.parse_args()

    key = args.key or generate_encryption_key()
    if not args.key:
        console.print("[bold]Generated encryption key[/bold]")
        console.print(f"ENCRYPTION_KEY={key}")
        console.print("[yellow]Losing this key makes stored credentials unrecoverable.[/yellow]")

    if args.encrypt:
        console.print(f"\n[cyan]Encrypted value:[/cyan] {encrypt_secret(args.encrypt, key)}")


if __name__ == "__main__":
    main()
