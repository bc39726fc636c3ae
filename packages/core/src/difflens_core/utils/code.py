NON_CODE_EXTENSIONS = {
    # images
    ".png",
    ".jpg",
    ".jpeg",
    ".gif",
    ".svg",
    ".ico",
    ".webp",
    ".bmp",
    # documents and fonts
    ".pdf",
    ".woff",
    ".woff2",
    ".ttf",
    ".eot",
    ".otf",
    # media
    ".mp4",
    ".mp3",
    ".wav",
    ".ogg",
    # archives
    ".zip",
    ".tar",
    ".gz",
    ".rar",
    ".7z",
    ".jar",
    # compiled artifacts and databases
    ".pyc",
    ".pyo",
    ".so",
    ".dylib",
    ".dll",
    ".exe",
    ".o",
    ".a",
    ".class",
    ".db",
    ".sqlite",
    ".lock",  # e.g. package-lock.json, Cargo.lock
}

# Bytes inspected when deciding whether file content is binary.
_BINARY_SNIFF_BYTES = 8192


def is_code_file(file_name: str) -> bool:
    return not any(file_name.lower().endswith(ext) for ext in NON_CODE_EXTENSIONS)


def is_binary_content(data: bytes) -> bool:
    """Same heuristic git uses: a NUL byte near the start means binary."""
    return b"\x00" in data[:_BINARY_SNIFF_BYTES]
