"""Static risk rule table for the command classifier.

Everything here is built once at import time and never mutated.  Rule
order is part of the contract: when two rules produce the same weight,
the one declared first wins and its description becomes the reason.

>>> BLACKLIST_RULES[0].description
'Recursive deletion'
>>> all(0 <= r.weight <= 100 for r in BLACKLIST_RULES)
True
"""

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class RiskRule:
    """One (pattern, description, weight) entry.

    >>> rule = RiskRule(re.compile(r"mkfs\\.", re.IGNORECASE), "Filesystem creation", 100)
    >>> rule.matches("MKFS.ext4 /dev/sdb")
    True
    """

    pattern: re.Pattern
    description: str
    weight: int

    def matches(self, text: str) -> bool:
        return self.pattern.search(text) is not None


def _rule(pattern: str, description: str, weight: int) -> RiskRule:
    return RiskRule(re.compile(pattern, re.IGNORECASE), description, weight)


# --- Static blacklist (declaration order = tie-break order) ---

BLACKLIST_RULES: tuple[RiskRule, ...] = (
    # destructive file operations
    _rule(r"rm\s+(-[a-z]*)?r[a-z]*\s+(-[a-z]*\s+)*(/|~|\*|\.\.)", "Recursive deletion", 100),
    _rule(r"rm\s+-rf\s+[/~*.]", "Forced recursive deletion", 100),
    _rule(r"rmdir\s+/s\s+/q", "Windows recursive folder delete", 100),
    _rule(r"del\s+/[fq]\s+/s", "Windows forced delete", 100),
    _rule(r"del\s+/s\s+/[fq]", "Windows forced delete", 100),
    _rule(r"format\s+[a-z]:", "Format disk drive", 100),
    # system destruction
    _rule(r":\(\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;?\s*:", "Fork bomb", 100),
    _rule(r"mkfs\.", "Filesystem creation", 100),
    _rule(r"dd\s+if=", "Raw disk write", 95),
    _rule(r">\s*/dev/sd[a-z]", "Direct disk overwrite", 100),
    # power state
    _rule(r"shutdown\s", "System shutdown", 80),
    _rule(r"reboot", "System reboot", 80),
    _rule(r"init\s+[06]", "Halt/reboot system", 85),
    # permission abuse
    _rule(r"chmod\s+777\s+/", "Full permissions on root", 90),
    _rule(r"chmod\s+-r\s+777", "Recursive full permissions", 85),
    _rule(r"chown\s+-r\s+.*\s+/", "Recursive ownership on root", 90),
    # credential and system file access
    _rule(r"/etc/passwd", "Password file access", 70),
    _rule(r"/etc/shadow", "Shadow file access", 85),
    # normalization strips backslashes, so the separators are optional
    _rule(r"c:\\?windows\\?system32", "Windows system folder", 75),
    # database destruction
    _rule(r"drop\s+database", "Drop database", 90),
    _rule(r"drop\s+table", "Drop table", 85),
    _rule(r"truncate\s+table", "Truncate table", 80),
    # remote code
    _rule(r"curl\s+.*\|\s*(bash|sh|zsh)", "Remote script execution", 80),
    _rule(r"wget\s+.*\|\s*(bash|sh|zsh)", "Remote script execution", 80),
    _rule(r"curl\s+.*-o.*&&.*chmod", "Download and execute", 75),
)

CUSTOM_BLACKLIST_WEIGHT = 80


# --- File extension heuristic ---

DANGEROUS_EXTENSIONS: tuple[str, ...] = (
    ".exe", ".dll", ".sys", ".bat", ".ps1", ".cmd", ".vbs", ".wsf", ".msi", ".scr",
)
DANGEROUS_EXTENSION_WEIGHT = 75

# Verbs that create, write, copy or move a file
_WRITE_VERBS = r"(?:>|\btouch\b|\becho\b.*>|\bcp\b|\bmv\b|\bcopy\b|\bmove\b)"

EXTENSION_RULES: tuple[RiskRule, ...] = tuple(
    _rule(_WRITE_VERBS + r".*" + re.escape(ext) + r"\b", f"Creating/modifying {ext} file",
          DANGEROUS_EXTENSION_WEIGHT)
    for ext in DANGEROUS_EXTENSIONS
)


# --- Suspicious pattern detector ---

SUSPICIOUS_RULES: tuple[RiskRule, ...] = (
    _rule(r"\beval\s*\(", "Eval execution detected", 70),
    _rule(r"python[0-9.]*\s.*-c.*socket|ruby\s.*-e.*socket|perl\s.*-e.*socket",
          "Script with network socket", 75),
    _rule(r"alias\s+\w+\s*=\s*['\"]?.*\brm\b|function\s+\w+.*\brm\b",
          "Suspicious alias/function definition", 65),
)


# --- Chained command separators: &&, ;, || and a single | ---

CHAIN_SPLIT_RE = re.compile(r"&&|;|\|\||(?<!\|)\|(?!\|)")
CHAINED_PREFIX = "Chained: "


# --- Path guard ---

CRITICAL_PATHS: tuple[str, ...] = (
    "/",
    "/etc",
    "/usr",
    "/bin",
    "/sbin",
    "/boot",
    "/var",
    "/root",
    "C:\\",
    "C:\\Windows",
    "C:\\Program Files",
    "C:\\Users",
)
PATH_GUARD_WEIGHT = 60

PATH_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"(?:^|\s)(/[^\s]+)"),
    re.compile(r"(?:^|\s)([A-Za-z]:\\[^\s]*)"),
    re.compile(r"(?:^|\s)(~/[^\s]+)"),
)


# --- Normalization tables ---

ZERO_WIDTH_RE = re.compile("[\u200b-\u200d\ufeff]")
# A backslash that starts a \xHH escape survives until hex decoding
BACKSLASH_RE = re.compile(r"\\(?!x[0-9a-fA-F]{2})")
QUOTE_RE = re.compile(r"['\"]")
BASE64_ECHO_RE = re.compile(r"echo\s+[\"']?([A-Za-z0-9+/=]{10,})[\"']?\s*\|\s*base64\s+-d")
HEX_ESCAPE_RE = re.compile(r"\\x([0-9a-fA-F]{2})")

# Representative canonical values, not the caller's real environment
HOME_DIR = "/home/user"
ENV_EXPANSIONS: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\$\{?HOME\}?", re.IGNORECASE), HOME_DIR),
    (re.compile(r"\$\{?USER\}?", re.IGNORECASE), "user"),
    (re.compile(r"\$\{?PWD\}?", re.IGNORECASE), "/current/dir"),
    (re.compile(r"\$\{?TMPDIR\}?", re.IGNORECASE), "/tmp"),
    (re.compile(r"~/"), HOME_DIR + "/"),
    (re.compile(r"%USERPROFILE%", re.IGNORECASE), "C:\\Users\\user"),
    (re.compile(r"%SYSTEMROOT%", re.IGNORECASE), "C:\\Windows"),
    (re.compile(r"%WINDIR%", re.IGNORECASE), "C:\\Windows"),
    (re.compile(r"%TEMP%", re.IGNORECASE), "C:\\temp"),
    (re.compile(r"%TMP%", re.IGNORECASE), "C:\\temp"),
    (re.compile(r"%APPDATA%", re.IGNORECASE), "C:\\Users\\user\\AppData"),
    (re.compile(r"%PROGRAMFILES%", re.IGNORECASE), "C:\\Program Files"),
)


# --- Built-in banned substrings, always merged into the custom blacklist ---

BUILTIN_BANNED_COMMANDS: tuple[str, ...] = (
    "rm -rf /",
    "rm -rf ~",
    "rm -rf *",
    "format c:",
    "del /f /s /q",
    "rmdir /s /q",
    ":(){:|:&};:",
    "dd if=",
    "mkfs.",
    "> /dev/sda",
    "chmod -R 777 /",
)
