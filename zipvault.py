# zipvault.py
#
# Password-based file/folder encryption library.
# The plaintext is always a zip archive (stored or deflated), sealed as a single AES-256-GCM blob:
#   MAGIC | version | salt_len | salt | scrypt N,r,p | nonce | ciphertext+tag
# The header bytes are bound to the ciphertext as associated data.
#
# Whole payloads are held in memory; inputs are expected to fit in RAM.
#
# Dependencies: stdlib + cryptography

from __future__ import annotations

import io
import logging
import os
import shutil
import stat
import struct
import sys
import zipfile
import zlib
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Dict, Iterable, List, Optional, Sequence, TextIO, Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt


# =========================
# Constants / Limits
# =========================

MAGIC = b"ZVLT"
VERSION = 1

SALT_LEN = 16
KEY_LEN = 32
NONCE_LEN = 12
TAG_LEN = 16

# Password KDF defaults (stored in every blob header)
SCRYPT_N = 1 << 15  # 32768 (~32 MiB memory with r=8)
SCRYPT_R = 8
SCRYPT_P = 1

# Hardened limits for reading blob headers
MAX_SCRYPT_N = 1 << 20
MAX_SCRYPT_R = 64
MAX_SCRYPT_P = 16
MAX_SCRYPT_MEM = 512 * 1024 * 1024  # 512 MiB, mem ~= 128 * r * N bytes

COPY_BUFFER_SIZE = 1024 * 1024

_FIXED_HEADER_FMT = "<4sHH"
_SCRYPT_FMT = "<III"

PathLike = Union[str, "os.PathLike[str]"]


# =========================
# Data
# =========================

@dataclass(frozen=True)
class ScryptParams:
    n: int
    r: int
    p: int


DEFAULT_SCRYPT_PARAMS = ScryptParams(SCRYPT_N, SCRYPT_R, SCRYPT_P)


@dataclass(frozen=True)
class Header:
    version: int
    salt: bytes
    scrypt_params: ScryptParams
    nonce: bytes

    raw: bytes  # exact header bytes, used as AEAD associated data


# =========================
# Errors
# =========================

class ZipVaultError(Exception):
    pass


class FileIOError(ZipVaultError):
    pass


class ConcurrentModificationError(FileIOError):
    pass


class TraversalError(ZipVaultError):
    pass


class ArchiveWriteError(ZipVaultError):
    def __init__(self, path: PathLike, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        # Undecodable file names carry lone surrogates that no text stream can print.
        shown = str(self.path).encode("utf-8", "backslashreplace").decode("utf-8")
        super().__init__(f"Failed to archive {shown}: {reason}")


class ArchiveReadError(ZipVaultError):
    pass


class EncryptionError(ZipVaultError):
    pass


class DecryptionError(ZipVaultError):
    pass


class SecretError(ZipVaultError):
    pass


# =========================
# Password capability
# =========================

def generate_salt() -> bytes:
    return os.urandom(SALT_LEN)


def parse_salt(text: str) -> bytes:
    """Decode a user-supplied salt given as a hex string of SALT_LEN bytes."""
    try:
        salt = bytes.fromhex(text.strip())
    except ValueError as ex:
        raise SecretError("Invalid salt: expected a hex string.") from ex
    if len(salt) != SALT_LEN:
        raise SecretError(
            f"Invalid salt: expected {SALT_LEN} bytes ({SALT_LEN * 2} hex characters), got {len(salt)} bytes."
        )
    return salt


def _ensure_password_ok(password: str) -> None:
    if not isinstance(password, str):
        raise TypeError("password must be str")
    if password == "":
        raise SecretError("Empty password is not allowed.")


def _check_scrypt_params(params: ScryptParams) -> Optional[str]:
    n, r, p = params.n, params.r, params.p
    if n < 2 or (n & (n - 1)) != 0:
        return "scrypt N must be a power of two greater than 1"
    if r < 1 or p < 1:
        return "scrypt r and p must be positive"
    if n > MAX_SCRYPT_N:
        return f"scrypt N exceeds {MAX_SCRYPT_N}"
    if r > MAX_SCRYPT_R:
        return f"scrypt r exceeds {MAX_SCRYPT_R}"
    if p > MAX_SCRYPT_P:
        return f"scrypt p exceeds {MAX_SCRYPT_P}"
    mem = 128 * r * n
    if mem > MAX_SCRYPT_MEM:
        return f"estimated scrypt memory {mem} bytes exceeds limit {MAX_SCRYPT_MEM}"
    return None


def scrypt_derive(password: str, salt: bytes, params: ScryptParams, length: int = KEY_LEN) -> bytes:
    kdf = Scrypt(
        salt=salt,
        length=length,
        n=params.n,
        r=params.r,
        p=params.p,
    )
    return kdf.derive(password.encode("utf-8"))


def build_header(salt: bytes, params: ScryptParams, nonce: bytes) -> bytes:
    if len(nonce) != NONCE_LEN:
        raise EncryptionError("Internal: nonce must be 12 bytes.")
    parts = [
        struct.pack(_FIXED_HEADER_FMT, MAGIC, VERSION, len(salt)),
        salt,
        struct.pack(_SCRYPT_FMT, params.n, params.r, params.p),
        nonce,
    ]
    return b"".join(parts)


def read_header(blob: bytes) -> Header:
    fixed_len = struct.calcsize(_FIXED_HEADER_FMT)
    if len(blob) < fixed_len:
        raise DecryptionError("Not a zipvault container (too short).")

    magic, ver, salt_len = struct.unpack_from(_FIXED_HEADER_FMT, blob, 0)
    if magic != MAGIC:
        raise DecryptionError("Not a zipvault container (bad magic).")
    if ver != VERSION:
        raise DecryptionError(f"Unsupported container version: {ver}")
    if salt_len != SALT_LEN:
        raise DecryptionError(f"Unsupported salt length: {salt_len}")

    scrypt_len = struct.calcsize(_SCRYPT_FMT)
    header_len = fixed_len + salt_len + scrypt_len + NONCE_LEN
    if len(blob) < header_len + TAG_LEN:
        raise DecryptionError("Truncated container.")

    offset = fixed_len
    salt = blob[offset:offset + salt_len]
    offset += salt_len
    n, r, p = struct.unpack_from(_SCRYPT_FMT, blob, offset)
    params = ScryptParams(n=n, r=r, p=p)
    problem = _check_scrypt_params(params)
    if problem is not None:
        raise DecryptionError(f"Unreasonable KDF parameters in header: {problem}.")
    offset += scrypt_len
    nonce = blob[offset:offset + NONCE_LEN]

    return Header(
        version=ver,
        salt=salt,
        scrypt_params=params,
        nonce=nonce,
        raw=blob[:header_len],
    )


class Encrypter:
    """Seals payloads under a key derived once from (password, salt)."""

    def __init__(self, password: str, salt: bytes, scrypt_params: Optional[ScryptParams] = None) -> None:
        _ensure_password_ok(password)
        if len(salt) != SALT_LEN:
            raise SecretError(f"Salt must be {SALT_LEN} bytes, got {len(salt)}.")
        params = scrypt_params or DEFAULT_SCRYPT_PARAMS
        problem = _check_scrypt_params(params)
        if problem is not None:
            raise SecretError(f"Invalid KDF parameters: {problem}.")

        self.salt = bytes(salt)
        self.scrypt_params = params
        self._aead = AESGCM(scrypt_derive(password, self.salt, params))

    def encrypt(self, plaintext: bytes) -> bytes:
        nonce = os.urandom(NONCE_LEN)
        header = build_header(self.salt, self.scrypt_params, nonce)
        return header + self._aead.encrypt(nonce, plaintext, header)


class Decrypter:
    """Opens blobs produced by Encrypter; salt and KDF parameters come from the blob header."""

    def __init__(self, password: str) -> None:
        _ensure_password_ok(password)
        self._password = password
        self._keys: Dict[Tuple[bytes, ScryptParams], bytes] = {}

    def _key_for(self, header: Header) -> bytes:
        cache_key = (header.salt, header.scrypt_params)
        key = self._keys.get(cache_key)
        if key is None:
            key = scrypt_derive(self._password, header.salt, header.scrypt_params)
            self._keys[cache_key] = key
        return key

    def decrypt(self, blob: bytes) -> bytes:
        header = read_header(blob)
        aead = AESGCM(self._key_for(header))
        try:
            return aead.decrypt(header.nonce, blob[len(header.raw):], header.raw)
        except InvalidTag as ex:
            raise DecryptionError("Authentication failed: wrong password or corrupted container.") from ex


# =========================
# File I/O helpers
# =========================

def _open_size(f: BinaryIO) -> int:
    return os.fstat(f.fileno()).st_size


def read_whole_file(path: PathLike) -> bytes:
    """
    Read the full content of a file.

    No lock is held on the file, so the size is checked against what was
    actually read: a shorter read, or any byte past the stat'ed size, means
    the file changed underneath us and ConcurrentModificationError is raised.
    """
    path = Path(path)
    try:
        f = open(path, "rb")
    except OSError as ex:
        raise FileIOError(f"Failed to open file: {path} ({ex})") from ex

    with f:
        try:
            size = _open_size(f)
            data = f.read(size)
        except OSError as ex:
            raise FileIOError(f"Failed to read file: {path} ({ex})") from ex

        if len(data) != size:
            raise ConcurrentModificationError(f"File change detected while reading {path} (shorter than expected).")

        try:
            extra = f.read(1)
        except OSError as ex:
            raise ConcurrentModificationError(
                f"File change detected while reading {path} (unexpected error: {ex})."
            ) from ex
        if extra:
            raise ConcurrentModificationError(f"File change detected while reading {path} (larger than expected).")

    return data


def create_file_and_truncate(path: PathLike) -> BinaryIO:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as ex:
        raise FileIOError(f"Failed to create directory: {path.parent} ({ex})") from ex
    try:
        return open(path, "wb")
    except OSError as ex:
        raise FileIOError(f"Failed to create file: {path} ({ex})") from ex


def write_whole_file(path: PathLike, data: bytes) -> None:
    # A failed write leaves the destination truncated/partial.
    f = create_file_and_truncate(path)
    try:
        with f:
            f.write(data)
    except OSError as ex:
        raise FileIOError(f"Failed to write file: {path} ({ex})") from ex


# =========================
# Path validation / joining
# =========================

def _is_windows_drive_path(p: str) -> bool:
    # Reject e.g. "C:foo", "C:\\foo" or "\\\\server\\share"
    if len(p) >= 2 and p[1] == ":" and p[0].isalpha():
        return True
    if p.startswith("\\\\"):
        return True
    return False


def validate_archive_name(name: str) -> PurePosixPath:
    """
    Path traversal defense for archive entry names:
    - must be a relative posix path (a trailing '/' marks a directory)
    - no absolute paths, no drive letters/UNC (Windows), no '..' or '.', no backslashes, no NUL
    """
    if not name:
        raise ArchiveReadError("Invalid empty entry name in archive.")
    if "\x00" in name:
        raise ArchiveReadError("Invalid NUL byte in archive entry name.")
    if "\\" in name:
        raise ArchiveReadError(f"Invalid path separator in archive entry name (backslash): {name!r}")
    if os.name == "nt" and _is_windows_drive_path(name):
        raise ArchiveReadError(f"Invalid drive/UNC path in archive: {name!r}")

    trimmed = name[:-1] if name.endswith("/") else name
    for part in trimmed.split("/"):
        if part in ("", ".", ".."):
            raise ArchiveReadError(f"Invalid path component in archive entry name: {name!r}")
    return PurePosixPath(trimmed)


def safe_join(base_dir: Path, rel_posix: PurePosixPath) -> Path:
    """Join base_dir with rel_posix, refusing any result that resolves outside base_dir."""
    candidate = base_dir.joinpath(*rel_posix.parts)

    base_real = base_dir.resolve()
    cand_real = candidate.resolve()
    try:
        cand_real.relative_to(base_real)
    except ValueError as ex:
        raise ArchiveReadError(f"Path traversal detected while extracting: {rel_posix}") from ex

    return candidate


# =========================
# File collection (encrypt)
# =========================

def _iter_files_in_dir(root: Path) -> Iterable[Path]:
    def on_error(ex: OSError) -> None:
        raise TraversalError(f"Failed to walk directory: {ex.filename} ({ex.strerror})") from ex

    for dirpath, dirnames, filenames in os.walk(root, onerror=on_error, followlinks=False):
        base = Path(dirpath)
        for name in dirnames + filenames:
            if (base / name).is_symlink():
                raise TraversalError(f"Refusing to traverse symlink: {base / name}")
        for name in filenames:
            yield base / name


def collect_files(root: PathLike) -> List[Path]:
    """Return every regular file under root, sorted. Directories stay implicit in the file paths."""
    root = Path(root)
    if root.is_symlink():
        raise TraversalError(f"Refusing to traverse symlink: {root}")
    if not root.is_dir():
        raise TraversalError(f"Not a directory: {root}")

    files: List[Path] = []
    for fp in _iter_files_in_dir(root):
        try:
            mode = fp.lstat().st_mode
        except OSError as ex:
            raise TraversalError(f"Failed to stat file: {fp} ({ex})") from ex
        if not stat.S_ISREG(mode):
            raise TraversalError(f"Unsupported file type (not a regular file): {fp}")
        files.append(fp)

    files.sort()
    return files


# =========================
# Archive packager
# =========================

def _archive_name(root: Path, path: Path) -> str:
    try:
        rel = path.relative_to(root)
    except ValueError as ex:
        raise ArchiveWriteError(path, f"not located under archive root {root}") from ex
    name = rel.as_posix()
    if name in ("", "."):
        raise ArchiveWriteError(path, "cannot archive the root itself")
    try:
        name.encode("utf-8")
    except UnicodeEncodeError as ex:
        raise ArchiveWriteError(path, f"file name is not valid UTF-8: {name!r}") from ex
    # Names extract_archive would refuse must never be sealed.
    try:
        validate_archive_name(name)
    except ArchiveReadError as ex:
        raise ArchiveWriteError(path, str(ex)) from ex
    return name


def build_archive(root_path: PathLike, file_paths: Sequence[PathLike], compress: bool) -> bytes:
    """
    Zip file_paths into memory, naming each entry relative to root_path.

    The compression method (deflate or store) applies uniformly to every
    entry. An archive is produced even for a single uncompressed file.
    """
    root = Path(root_path)
    method = zipfile.ZIP_DEFLATED if compress else zipfile.ZIP_STORED
    seen: set[str] = set()

    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=method, strict_timestamps=False) as zf:
        for raw_fp in file_paths:
            fp = Path(raw_fp)
            name = _archive_name(root, fp)
            if name in seen:
                raise ArchiveWriteError(fp, f"duplicate archive entry name {name!r}")
            seen.add(name)

            try:
                info = zipfile.ZipInfo.from_file(fp, arcname=name, strict_timestamps=False)
            except OSError as ex:
                raise ArchiveWriteError(fp, f"failed to stat file ({ex})") from ex
            if info.is_dir():
                raise ArchiveWriteError(fp, "directories are not archived as entries")
            info.compress_type = method

            try:
                with open(fp, "rb") as src, zf.open(info, "w") as dst:
                    shutil.copyfileobj(src, dst, COPY_BUFFER_SIZE)
            except (OSError, zipfile.LargeZipFile) as ex:
                raise ArchiveWriteError(fp, str(ex)) from ex

    return buf.getvalue()


def _extract_one(zf: zipfile.ZipFile, info: zipfile.ZipInfo, out_dir: Path) -> None:
    rel = validate_archive_name(info.filename)
    target = safe_join(out_dir, rel)

    if info.is_dir():
        try:
            target.mkdir(parents=True, exist_ok=True)
        except OSError as ex:
            raise FileIOError(f"Failed to create directory: {target} ({ex})") from ex
        return

    # Parents come from the entry's own path; directory entries may be absent or out of order.
    fout = create_file_and_truncate(target)
    try:
        with fout, zf.open(info) as src:
            shutil.copyfileobj(src, fout, COPY_BUFFER_SIZE)
    except (zipfile.BadZipFile, zlib.error, EOFError, NotImplementedError, RuntimeError) as ex:
        raise ArchiveReadError(f"Corrupt archive entry {info.filename!r}: {ex}") from ex
    except OSError as ex:
        raise FileIOError(f"Failed to extract {info.filename!r} to {target} ({ex})") from ex


def extract_archive(archive: bytes, output_dir: PathLike) -> None:
    """Unpack archive bytes under output_dir, in archive order, stopping at the first failing entry."""
    out_dir = Path(output_dir)
    try:
        zf = zipfile.ZipFile(io.BytesIO(archive))
    except (zipfile.BadZipFile, zipfile.LargeZipFile, ValueError) as ex:
        raise ArchiveReadError(f"Malformed archive: {ex}") from ex

    try:
        out_dir.mkdir(parents=True, exist_ok=True)
    except OSError as ex:
        raise FileIOError(f"Failed to create output directory: {out_dir} ({ex})") from ex

    with zf:
        for info in zf.infolist():
            _extract_one(zf, info, out_dir)


# =========================
# Encrypt / Decrypt pipeline
# =========================

def encrypt_to_file(
    root_path: PathLike,
    file_paths: Sequence[PathLike],
    cipher_path: PathLike,
    encrypter: Encrypter,
    compress: bool = False,
) -> None:
    archive = build_archive(root_path, file_paths, compress)

    try:
        ciphertext = encrypter.encrypt(archive)
    except Exception as ex:
        raise EncryptionError(f"Encryption failed: {ex}") from ex

    write_whole_file(cipher_path, ciphertext)


def encrypt_file(plain_path: PathLike, cipher_path: PathLike, encrypter: Encrypter, compress: bool = False) -> None:
    """Encrypt one file into cipher_path, overwriting it and creating parent directories as needed."""
    plain = Path(plain_path)
    encrypt_to_file(plain.parent, [plain], cipher_path, encrypter, compress)


def encrypt_dir(dir_path: PathLike, cipher_path: PathLike, encrypter: Encrypter, compress: bool = False) -> None:
    """Encrypt a whole directory tree into cipher_path, overwriting it and creating parent directories as needed."""
    root = Path(dir_path)
    files = collect_files(root)
    encrypt_to_file(root, files, cipher_path, encrypter, compress)


def decrypt_from_file(cipher_path: PathLike, output_dir: PathLike, decrypter: Decrypter) -> None:
    ciphertext = read_whole_file(cipher_path)

    try:
        archive = decrypter.decrypt(ciphertext)
    except DecryptionError:
        raise
    except Exception as ex:
        raise DecryptionError(f"Decryption failed: {ex}") from ex

    extract_archive(archive, output_dir)


decrypt_file = decrypt_from_file


# =========================
# Logging
# =========================

LOG_FORMAT = "%(asctime)s %(name)s: %(message)s"
LOG_DATEFMT = "%H:%M:%S"
FATAL_EXIT_CODE = 1


class VerboseLogger:
    """
    Line logger that stays quiet unless verbose.

    print/printf/println only emit in verbose mode. fatal/fatalf always emit
    and then exit the process with FATAL_EXIT_CODE.
    """

    def __init__(self, name: str, verbose: bool = False, stream: Optional[TextIO] = None) -> None:
        self.verbose = verbose
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        self.logger.handlers.clear()

        handler = logging.StreamHandler(stream if stream is not None else sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        self.logger.addHandler(handler)

    def print(self, *args: object) -> None:
        if self.verbose:
            self.logger.info(" ".join(str(a) for a in args))

    def printf(self, fmt: str, *args: object) -> None:
        if self.verbose:
            self.logger.info(fmt, *args)

    def println(self, msg: str) -> None:
        if self.verbose:
            self.logger.info(msg)

    def fatal(self, *args: object) -> None:
        self.logger.critical(" ".join(str(a) for a in args))
        raise SystemExit(FATAL_EXIT_CODE)

    def fatalf(self, fmt: str, *args: object) -> None:
        self.logger.critical(fmt, *args)
        raise SystemExit(FATAL_EXIT_CODE)
