#!/usr/bin/env python3
# zipvault_cli.py
#
# Command line front-ends:
#   zvencrypt [-c] [-password STR] [-salt HEX] [-v] INPUT OUTPUT
#   zvdecrypt [-password STR] [-v] INPUT OUTPUT
#
# Quiet on success unless -v is given. Any error is logged and exits non-zero.

from __future__ import annotations

import argparse
import stat
import sys
from dataclasses import dataclass
from getpass import getpass
from pathlib import Path
from typing import Optional, Sequence

from zipvault import (
    Decrypter,
    Encrypter,
    SecretError,
    VerboseLogger,
    ZipVaultError,
    decrypt_file,
    encrypt_dir,
    encrypt_file,
    generate_salt,
    parse_salt,
)


# =========================
# Options
# =========================

@dataclass(frozen=True)
class EncryptOptions:
    input_path: Path
    output_path: Path
    compress: bool = False
    password: Optional[str] = None
    salt: Optional[str] = None
    verbose: bool = False


@dataclass(frozen=True)
class DecryptOptions:
    input_path: Path
    output_path: Path
    password: Optional[str] = None
    verbose: bool = False


# =========================
# Helpers
# =========================

def eprint(*args: object) -> None:
    print(*args, file=sys.stderr)


def get_password(password: Optional[str]) -> str:
    if password is not None:
        return password
    try:
        return getpass("Enter Password: ")
    except EOFError as ex:
        raise SecretError("No password provided.") from ex


def get_salt(salt: Optional[str]) -> bytes:
    if salt is not None:
        return parse_salt(salt)
    return generate_salt()


# =========================
# Encrypt / Decrypt runs
# =========================

def run_encrypt(options: EncryptOptions, logger: VerboseLogger) -> None:
    input_path = options.input_path
    try:
        st = input_path.stat()
    except OSError as ex:
        raise ZipVaultError(f"Cannot access input path: {input_path} ({ex})") from ex
    is_dir = stat.S_ISDIR(st.st_mode)

    salt = get_salt(options.salt)
    encrypter = Encrypter(get_password(options.password), salt)

    if is_dir:
        logger.printf("Encrypting directory '%s'...", input_path)
        encrypt_dir(input_path, options.output_path, encrypter, options.compress)
    else:
        logger.printf("Encrypting file '%s'...", input_path)
        encrypt_file(input_path, options.output_path, encrypter, options.compress)

    logger.print("Done")


def run_decrypt(options: DecryptOptions, logger: VerboseLogger) -> None:
    input_path = options.input_path
    try:
        input_path.stat()
    except OSError as ex:
        raise ZipVaultError(f"Cannot access input path: {input_path} ({ex})") from ex
    if input_path.is_dir():
        raise ZipVaultError("Can't decrypt folders. Input must point to a file.")

    decrypter = Decrypter(get_password(options.password))

    logger.printf("Decrypting file '%s'...", input_path)
    decrypt_file(input_path, options.output_path, decrypter)

    logger.print("Done")


# =========================
# CLI
# =========================

def _add_common_arguments(p: argparse.ArgumentParser, input_help: str, output_help: str) -> None:
    p.add_argument(
        "-password",
        "--password",
        default=None,
        help="Specify the encryption password instead of prompting the std input (optional).",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Verbose mode.")
    p.add_argument("input", metavar="INPUT", help=input_help)
    p.add_argument("output", metavar="OUTPUT", help=output_help)


def build_encrypt_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="zvencrypt",
        description="Encrypt a file or a directory into a single password-protected container.",
    )
    p.add_argument("-c", "--compress", action="store_true", help="Compress the content before encrypting it.")
    p.add_argument(
        "-salt",
        "--salt",
        default=None,
        help="Specify a custom password salt as 32 hex characters (optional). A fresh one is generated otherwise.",
    )
    _add_common_arguments(p, "File or directory to encrypt.", "Container file to write (overwritten if present).")
    return p


def build_decrypt_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="zvdecrypt",
        description="Decrypt a container produced by zvencrypt into a directory.",
    )
    _add_common_arguments(p, "Container file to decrypt.", "Output directory (created if needed).")
    return p


def _run(run, options, logger: VerboseLogger) -> int:
    try:
        run(options, logger)
    except (ZipVaultError, OSError) as ex:
        logger.fatal(f"Error: {ex}")
    except KeyboardInterrupt:
        eprint("Interrupted.")
        return 130
    return 0


def encrypt_main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_encrypt_parser()
    args = parser.parse_args(argv)

    options = EncryptOptions(
        input_path=Path(args.input),
        output_path=Path(args.output),
        compress=bool(args.compress),
        password=args.password,
        salt=args.salt,
        verbose=bool(args.verbose),
    )
    logger = VerboseLogger(parser.prog, verbose=options.verbose)
    return _run(run_encrypt, options, logger)


def decrypt_main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_decrypt_parser()
    args = parser.parse_args(argv)

    options = DecryptOptions(
        input_path=Path(args.input),
        output_path=Path(args.output),
        password=args.password,
        verbose=bool(args.verbose),
    )
    logger = VerboseLogger(parser.prog, verbose=options.verbose)
    return _run(run_decrypt, options, logger)


def main(argv: Optional[Sequence[str]] = None) -> int:
    argv = list(sys.argv[1:] if argv is None else argv)
    if not argv or argv[0] not in ("encrypt", "decrypt"):
        eprint("usage: zipvault_cli.py {encrypt,decrypt} [OPTIONS] INPUT OUTPUT")
        return 2
    if argv[0] == "encrypt":
        return encrypt_main(argv[1:])
    return decrypt_main(argv[1:])


if __name__ == "__main__":
    raise SystemExit(main())
