#!/usr/bin/env python3
"""
===================================================================
GITHUB REPOSITORY SECRET SCANNER
===================================================================

PURPOSE:
    Scans the files of a single GitHub repository for accidentally
    committed credentials (API keys, tokens, connection strings) and
    reports every match classified by severity and type.

FEATURES:
    ✓ Remote scanning through the GitHub API (no clone required)
    ✓ Bounded concurrency: files are fetched in fixed-size batches
    ✓ Per-file failure isolation (one bad file never aborts a scan)
    ✓ Truncated-tree tolerance with a non-fatal warning
    ✓ Built-in path exclusions plus caller-supplied regex exclusions
    ✓ Custom regex pattern support (JSON file)
    ✓ Optional fetch timeout and bounded retry with exponential backoff
    ✓ Console, JSON and SARIF output
    ✓ Structured JSON logging for observability

DETECTION METHOD:
    Line-by-line regular expression matching. Every rule is applied to
    every line of every scanned file; secrets that span several lines
    are not detected.

REQUIREMENTS:
    pip install PyGithub aiohttp tqdm

USAGE:
    export GITHUB_TOKEN="ghp_your_token_here"
    repo-secret-scanner --owner my-org --repo my-service
    repo-secret-scanner -o my-org -r my-service -b develop -f sarif --output scan.sarif
    repo-secret-scanner -o my-org -r my-service -e '^docs/' -e '\\.snap$'

CONFIGURATION:
    Set via environment variables (command-line flags take precedence):
    - GITHUB_TOKEN: GitHub personal access token
    - GITHUB_API_URL: API base URL (default: https://api.github.com)
    - SCAN_CONCURRENCY: Files fetched in parallel (default: 10)
    - DEFAULT_BRANCH: Branch to scan (default: main)
    - OUTPUT_FORMAT: console|json|sarif (default: console)
    - LOG_FORMAT: text|json (default: text)
    - FETCH_TIMEOUT_SECONDS: Per-file fetch timeout (default: none)
    - FETCH_MAX_ATTEMPTS: Attempts per file fetch (default: 1)

EXIT CODES:
    0   No secrets found
    1   Secrets found, or the scan could not run
    130 Interrupted by user (Ctrl+C)

===================================================================
"""
import argparse
import asyncio
import base64
import binascii
import json
import logging
import os
import re
import sys
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import (
    Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Mapping,
    Optional, Protocol, Sequence, Tuple, Union,
)
from urllib.parse import quote

import aiohttp
from github import Auth, Github, GithubException
from tqdm import tqdm

__version__ = "1.0.0"

# ===================================================================
# CONFIGURATION & CONSTANTS
# ===================================================================

GITHUB_TOKEN = os.environ.get("GITHUB_TOKEN")
GITHUB_API_URL = os.environ.get("GITHUB_API_URL", "https://api.github.com")
SCAN_CONCURRENCY = int(os.environ.get("SCAN_CONCURRENCY", "10"))
DEFAULT_BRANCH = os.environ.get("DEFAULT_BRANCH", "main")
OUTPUT_FORMAT = os.environ.get("OUTPUT_FORMAT", "console")  # console|json|sarif
LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # text|json

_timeout_env = os.environ.get("FETCH_TIMEOUT_SECONDS", "")
FETCH_TIMEOUT_SECONDS: Optional[float] = float(_timeout_env) if _timeout_env else None
FETCH_MAX_ATTEMPTS = int(os.environ.get("FETCH_MAX_ATTEMPTS", "1"))
FETCH_BACKOFF_BASE = 1.0

GITHUB_API_VERSION = "2022-11-28"
OUTPUT_FORMATS = ("console", "json", "sarif")

# Always excluded, regardless of caller configuration
DEFAULT_EXCLUDE_PATTERNS: Tuple[re.Pattern, ...] = (
    re.compile(r"node_modules/"),
    re.compile(r"\.git/"),
    re.compile(r"dist/"),
    re.compile(r"build/"),
    re.compile(r"\.min\.js$"),
    re.compile(r"\.map$"),
    re.compile(r"package-lock\.json$"),
    re.compile(r"yarn\.lock$"),
)


# ===================================================================
# LOGGING SETUP
# ===================================================================

class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add custom fields
        if hasattr(record, 'repo'):
            log_data["repo"] = record.repo
        if hasattr(record, 'file'):
            log_data["file"] = record.file
        if hasattr(record, 'finding_count'):
            log_data["finding_count"] = record.finding_count

        return json.dumps(log_data)


def setup_logging(log_format: str = "text", level: int = logging.INFO) -> logging.Logger:
    """
    Setup logging with either text or JSON format.

    Logs go to stderr so that reports written to stdout stay machine-readable.
    """
    logger = logging.getLogger(__name__)
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)

    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))

    logger.addHandler(handler)
    return logger


logger = setup_logging(LOG_FORMAT)


# ===================================================================
# ERRORS
# ===================================================================

class ScannerError(Exception):
    """Base class for scanner errors."""


class RepositoryNotFoundError(ScannerError):
    """Repository, branch or file path does not exist."""


class ContentDecodeError(ScannerError):
    """File content could not be turned into text."""


# ===================================================================
# SEVERITY & DETECTION PATTERNS
# ===================================================================

class Severity(str, Enum):
    """Severity levels for findings."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


SEVERITY_ORDER: Sequence[Severity] = (Severity.HIGH, Severity.MEDIUM, Severity.LOW)


@dataclass(frozen=True)
class PatternRule:
    """
    A single named detection rule.

    Fields:
        name:     Secret type label shown in findings.
        pattern:  Compiled regular expression applied to one line at a time.
        severity: Severity assigned to every match of this rule.
    """
    name: str
    pattern: re.Pattern
    severity: Severity = Severity.HIGH

    def find_all(self, line: str) -> Iterator[str]:
        """Yield the text of every non-overlapping match in ``line``."""
        for match in self.pattern.finditer(line):
            yield match.group(0)


# Catalog order is significant: findings are emitted rule by rule.
# Specific provider formats come first, generic assignments last.
SECRET_PATTERNS: Tuple[PatternRule, ...] = (
    # Cloud Providers
    PatternRule(
        name="AWS Access Key",
        pattern=re.compile(r'\b(?:AKIA|ASIA|AGPA|AIDA)[A-Z0-9]{16}\b'),
        severity=Severity.HIGH,
    ),
    PatternRule(
        name="AWS Secret Key",
        pattern=re.compile(
            r'(?i)aws_?secret_?(?:access_?)?key\s*[:=]\s*["\']?[A-Za-z0-9/+=]{40}["\']?'
        ),
        severity=Severity.HIGH,
    ),
    PatternRule(
        name="Google API Key",
        pattern=re.compile(r'\bAIza[0-9A-Za-z\-_]{35}'),
        severity=Severity.HIGH,
    ),

    # Version Control & Package Registries
    PatternRule(
        name="GitHub Token",
        pattern=re.compile(r'\b(?:ghp|gho|ghu|ghs|ghr)_[A-Za-z0-9]{36}\b'),
        severity=Severity.HIGH,
    ),
    PatternRule(
        name="GitHub Fine-Grained Token",
        pattern=re.compile(r'\bgithub_pat_[A-Za-z0-9_]{82}\b'),
        severity=Severity.HIGH,
    ),
    PatternRule(
        name="NPM Token",
        pattern=re.compile(r'\bnpm_[A-Za-z0-9]{36}\b'),
        severity=Severity.HIGH,
    ),

    # Cryptographic Keys
    PatternRule(
        name="Private Key",
        pattern=re.compile(
            r'-----BEGIN (?:RSA |EC |DSA |OPENSSH |ENCRYPTED |PGP )?PRIVATE KEY(?: BLOCK)?-----'
        ),
        severity=Severity.HIGH,
    ),

    # Payment & AI Services
    PatternRule(
        name="Stripe API Key",
        pattern=re.compile(r'\b(?:sk|rk)_(?:live|test)_[0-9a-zA-Z]{24,}\b'),
        severity=Severity.HIGH,
    ),
    PatternRule(
        name="OpenAI API Key",
        pattern=re.compile(r'\bsk-(?:proj-)?[A-Za-z0-9_-]{20,}'),
        severity=Severity.HIGH,
    ),

    # Communication
    PatternRule(
        name="Slack Token",
        pattern=re.compile(r'\bxox[baprs]-[0-9A-Za-z-]{10,48}'),
        severity=Severity.HIGH,
    ),
    PatternRule(
        name="Slack Webhook",
        pattern=re.compile(
            r'https://hooks\.slack\.com/services/T[A-Z0-9]+/B[A-Z0-9]+/[A-Za-z0-9]{24}'
        ),
        severity=Severity.MEDIUM,
    ),
    PatternRule(
        name="SendGrid API Key",
        pattern=re.compile(r'\bSG\.[A-Za-z0-9_-]{22}\.[A-Za-z0-9_-]{43}'),
        severity=Severity.HIGH,
    ),
    PatternRule(
        name="Twilio API Key",
        pattern=re.compile(r'\bSK[0-9a-fA-F]{32}\b'),
        severity=Severity.MEDIUM,
    ),

    # Databases
    PatternRule(
        name="MongoDB Connection String",
        pattern=re.compile(r'mongodb(?:\+srv)?://[^:\s/]+:[^@\s]+@[\w.-]+(?::\d+)?'),
        severity=Severity.HIGH,
    ),
    PatternRule(
        name="Database Connection String",
        pattern=re.compile(
            r'(?:postgres(?:ql)?|mysql|mariadb)://[^:\s/]+:[^@\s]+@[\w.-]+(?::\d+)?'
        ),
        severity=Severity.HIGH,
    ),
    PatternRule(
        name="Redis Connection String",
        pattern=re.compile(r'rediss?://[^:\s/]*:[^@\s]+@[\w.-]+(?::\d+)?'),
        severity=Severity.HIGH,
    ),

    # Tokens
    PatternRule(
        name="JWT Token",
        pattern=re.compile(r'\beyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}'),
        severity=Severity.MEDIUM,
    ),
    PatternRule(
        name="Bearer Token",
        pattern=re.compile(r'(?i)\bbearer\s+[A-Za-z0-9\-._~+/]{20,}=*'),
        severity=Severity.MEDIUM,
    ),

    # Generic Patterns (should be last for specificity)
    PatternRule(
        name="Hardcoded Password",
        pattern=re.compile(r'(?i)\b(?:password|passwd|pwd)\s*[:=]\s*["\'][^"\'\s]{8,}["\']'),
        severity=Severity.MEDIUM,
    ),
    PatternRule(
        name="Generic Secret",
        pattern=re.compile(
            r'(?i)\b(?:secret|token|api[_-]?key|access[_-]?key|auth[_-]?token'
            r'|client[_-]?secret|private[_-]?key)\w*\s*[:=]\s*["\']?[^\s"\']{8,}["\']?'
        ),
        severity=Severity.LOW,
    ),
)


def build_catalog(extra_rules: Iterable[PatternRule] = ()) -> Tuple[PatternRule, ...]:
    """Return the built-in rules followed by ``extra_rules`` as a new catalog."""
    return SECRET_PATTERNS + tuple(extra_rules)


def load_custom_patterns(filepath: str) -> List[PatternRule]:
    """
    Load custom detection rules from a JSON file.

    Expected format:
    {
      "patterns": [
        {
          "name": "Internal Service Key",
          "regex": "isk_[A-Za-z0-9]{32}",
          "severity": "HIGH"
        }
      ]
    }

    Severity is optional and defaults to MEDIUM.

    Args:
        filepath: Path to custom patterns JSON file

    Returns:
        List of PatternRule, empty when the file cannot be used
    """
    custom_patterns = []

    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)

        for pattern_def in data.get('patterns', []):
            name = pattern_def.get('name', 'Custom Pattern')
            regex = pattern_def.get('regex')

            if not regex:
                logger.warning(f"Skipping pattern {name}: no regex provided")
                continue

            severity_name = str(pattern_def.get('severity', Severity.MEDIUM.value)).upper()
            try:
                severity = Severity(severity_name)
            except ValueError:
                logger.warning(f"Unknown severity {severity_name!r} for pattern {name}, using MEDIUM")
                severity = Severity.MEDIUM

            try:
                compiled = re.compile(regex)
            except re.error as e:
                logger.error(f"Invalid regex for pattern {name}: {e}")
                continue

            custom_patterns.append(PatternRule(name=name, pattern=compiled, severity=severity))
            logger.info(f"Loaded custom pattern: {name}")

    except FileNotFoundError:
        logger.warning(f"Custom patterns file not found: {filepath}")
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in custom patterns file: {e}")
    except (OSError, AttributeError, TypeError) as e:
        logger.error(f"Error loading custom patterns: {e}")

    return custom_patterns


# ===================================================================
# PATH FILTERING
# ===================================================================

class PathFilter:
    """Decides whether a repository path is eligible for content scanning."""

    def __init__(self, exclude_patterns: Iterable[Union[str, re.Pattern]] = ()):
        self.exclude_patterns: Tuple[re.Pattern, ...] = tuple(
            p if isinstance(p, re.Pattern) else re.compile(p) for p in exclude_patterns
        )

    @property
    def all_patterns(self) -> Tuple[re.Pattern, ...]:
        return DEFAULT_EXCLUDE_PATTERNS + self.exclude_patterns

    def should_exclude(self, path: str) -> bool:
        """True if any built-in or caller-supplied pattern matches ``path``."""
        return any(pattern.search(path) for pattern in self.all_patterns)

    def is_scannable(self, path: str) -> bool:
        return not self.should_exclude(path)


# ===================================================================
# CONTENT MATCHING
# ===================================================================

@dataclass
class Finding:
    """One detected secret occurrence."""

    file: str
    line: int
    match: str
    type: str
    severity: Severity
    context: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file": self.file,
            "line": self.line,
            "type": self.type,
            "severity": self.severity.value,
            "match": self.match,
            "context": self.context,
        }


def get_context(lines: Sequence[str], line_index: int) -> str:
    """Return the line before, the line itself and the line after, clipped to the file."""
    start = max(0, line_index - 1)
    end = min(len(lines), line_index + 2)
    return "\n".join(lines[start:end])


class ContentMatcher:
    """Applies a pattern catalog to the text of a single file."""

    def __init__(self, catalog: Sequence[PatternRule] = SECRET_PATTERNS):
        self.catalog = tuple(catalog)

    def scan(self, content: str, file_path: str) -> List[Finding]:
        """
        Scan file content line by line.

        Lines are split on "\\n" only; a trailing "\\r" stays part of the
        line. Findings come out rule by rule in catalog order and, within a
        rule, in ascending line order. They are not re-sorted by line.

        Args:
            content: Decoded file text
            file_path: Path reported on every finding

        Returns:
            List of findings, empty when nothing matched
        """
        findings = []
        lines = content.split("\n")

        for rule in self.catalog:
            for index, line in enumerate(lines):
                for matched in rule.find_all(line):
                    findings.append(Finding(
                        file=file_path,
                        line=index + 1,
                        match=matched,
                        type=rule.name,
                        severity=rule.severity,
                        context=get_context(lines, index),
                    ))

        return findings


# ===================================================================
# REPOSITORY SOURCE
# ===================================================================

@dataclass(frozen=True)
class TreeEntry:
    """A single item of a repository tree listing."""
    path: Optional[str]
    type: Optional[str]


class TreeListing(list):
    """Tree entries plus whether the upstream listing was cut short."""

    def __init__(self, entries: Iterable[TreeEntry] = (), truncated: bool = False):
        super().__init__(entries)
        self.truncated = truncated


class RepositorySource(Protocol):
    """The two operations the scanner needs from a repository host."""

    async def get_tree(self, owner: str, repo: str, branch: str) -> Sequence[TreeEntry]:
        """List every entry of ``branch``; raise RepositoryNotFoundError if missing."""

    async def get_content(self, owner: str, repo: str, path: str) -> str:
        """Return file text; raise RepositoryNotFoundError if missing or not a file."""


def decode_content_payload(data: Any) -> str:
    """
    Turn a GitHub contents API response body into text.

    Raises:
        ContentDecodeError: for directory listings, non-base64 payloads
            and bytes that are not valid UTF-8
    """
    if not isinstance(data, Mapping) or "content" not in data:
        raise ContentDecodeError("Not a file")

    encoding = data.get("encoding", "base64")
    if encoding != "base64":
        raise ContentDecodeError(f"Unsupported content encoding: {encoding}")

    try:
        return base64.b64decode(data["content"]).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        raise ContentDecodeError(f"Cannot decode content: {e}") from e


class GitHubRepositorySource:
    """
    Repository source backed by the GitHub API.

    Tree listings go through PyGithub (run on a worker thread, since the
    client is synchronous). File contents are fetched with a shared aiohttp
    session so that a batch of requests really runs concurrently.
    """

    def __init__(self, token: Optional[str] = None, api_url: str = GITHUB_API_URL):
        self.token = token or GITHUB_TOKEN
        self.api_url = api_url.rstrip("/")
        auth = Auth.Token(self.token) if self.token else None
        self._github = Github(auth=auth, base_url=self.api_url)
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> "GitHubRepositorySource":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers=self._headers())
        return self._session

    def _fetch_tree(self, owner: str, repo: str, branch: str) -> TreeListing:
        repository = self._github.get_repo(f"{owner}/{repo}")

        # Resolve the branch to its commit tree, then list it recursively
        branch_data = repository.get_branch(branch)
        tree_sha = branch_data.commit.commit.tree.sha
        git_tree = repository.get_git_tree(tree_sha, recursive=True)

        entries = [TreeEntry(path=item.path, type=item.type) for item in git_tree.tree]
        truncated = bool(git_tree.raw_data.get("truncated", False))
        return TreeListing(entries, truncated=truncated)

    async def get_tree(self, owner: str, repo: str, branch: str = DEFAULT_BRANCH) -> TreeListing:
        try:
            return await asyncio.to_thread(self._fetch_tree, owner, repo, branch)
        except GithubException as e:
            if e.status == 404:
                raise RepositoryNotFoundError(
                    f"Repository {owner}/{repo} not found or branch '{branch}' doesn't exist. "
                    f"Check the repo name and branch."
                ) from e
            raise

    async def get_content(self, owner: str, repo: str, path: str) -> str:
        url = f"{self.api_url}/repos/{owner}/{repo}/contents/{quote(path)}"
        session = self._get_session()

        async with session.get(url) as response:
            if response.status == 404:
                raise RepositoryNotFoundError(f"File {path} not found")
            response.raise_for_status()
            data = await response.json()

        return decode_content_payload(data)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._github.close()


# ===================================================================
# FETCH POLICY (TIMEOUT & RETRY)
# ===================================================================

@dataclass(frozen=True)
class FetchPolicy:
    """
    Timeout and retry settings for per-file content fetches.

    The default (one attempt, no timeout) never retries and never gives up
    on a slow request.
    """
    max_attempts: int = 1
    timeout: Optional[float] = None
    backoff_base: float = FETCH_BACKOFF_BASE

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be positive")
        if self.backoff_base < 0:
            raise ValueError("backoff_base must not be negative")


DEFAULT_FETCH_POLICY = FetchPolicy()


async def fetch_with_policy(
    func: Callable[..., Awaitable[str]],
    *args,
    policy: FetchPolicy = DEFAULT_FETCH_POLICY
) -> str:
    """
    Await ``func(*args)`` under a fetch policy.

    Args:
        func: Coroutine function to call
        *args: Positional arguments for func
        policy: Timeout and retry settings

    Returns:
        Result of func call

    Raises:
        The last error once all attempts are used. RepositoryNotFoundError
        is raised immediately since retrying cannot fix it.
    """
    for attempt in range(policy.max_attempts):
        try:
            if policy.timeout is not None:
                return await asyncio.wait_for(func(*args), timeout=policy.timeout)
            return await func(*args)

        except RepositoryNotFoundError:
            raise

        except Exception as e:
            if attempt == policy.max_attempts - 1:
                raise

            wait_time = policy.backoff_base * (2 ** attempt)
            logger.warning(f"Fetch failed (attempt {attempt + 1}/{policy.max_attempts}): {e!r}")
            logger.info(f"Backing off for {wait_time:.1f}s")
            await asyncio.sleep(wait_time)

    raise ScannerError(f"Failed after {policy.max_attempts} attempts")


# ===================================================================
# MAIN ORCHESTRATION
# ===================================================================

@dataclass(frozen=True)
class RepositoryRef:
    """Identifies the repository and branch being scanned."""
    owner: str
    repo: str
    branch: str = DEFAULT_BRANCH

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}/{self.branch}"


def chunk_paths(paths: Sequence[str], size: int) -> List[List[str]]:
    """Split ``paths`` into consecutive batches of at most ``size`` items."""
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [list(paths[i:i + size]) for i in range(0, len(paths), size)]


def _entry_field(entry: Any, name: str) -> Optional[str]:
    if isinstance(entry, Mapping):
        return entry.get(name)
    return getattr(entry, name, None)


class SecretScanner:
    """
    Fetches a repository's files from a RepositorySource and scans them.

    Files are processed in batches of ``concurrency_limit``. A batch runs
    concurrently and must finish completely before the next one starts, so
    no more than ``concurrency_limit`` fetches are ever in flight.
    """

    def __init__(
        self,
        source: RepositorySource,
        exclude_patterns: Iterable[Union[str, re.Pattern]] = (),
        concurrency_limit: int = SCAN_CONCURRENCY,
        catalog: Optional[Sequence[PatternRule]] = None,
        fetch_policy: Optional[FetchPolicy] = None,
        show_progress: bool = False
    ):
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")

        self.source = source
        self.path_filter = PathFilter(exclude_patterns)
        self.concurrency_limit = concurrency_limit
        self.matcher = ContentMatcher(catalog if catalog is not None else SECRET_PATTERNS)
        self.fetch_policy = fetch_policy or DEFAULT_FETCH_POLICY
        self.show_progress = show_progress

    def set_exclude_patterns(self, patterns: Iterable[Union[str, re.Pattern]]) -> None:
        self.path_filter = PathFilter(patterns)

    def select_files(self, tree: Iterable[Any]) -> List[str]:
        """Keep blob entries with a path that the path filter accepts."""
        file_paths = []
        for entry in tree:
            path = _entry_field(entry, "path")
            if _entry_field(entry, "type") != "blob" or not path:
                continue
            if self.path_filter.is_scannable(path):
                file_paths.append(path)
        return file_paths

    async def _scan_file(self, ref: RepositoryRef, file_path: str) -> List[Finding]:
        """Fetch and scan one file. Any failure yields no findings for it."""
        try:
            content = await fetch_with_policy(
                self.source.get_content, ref.owner, ref.repo, file_path,
                policy=self.fetch_policy
            )
            findings = self.matcher.scan(content, file_path)
        except Exception as e:
            logger.warning(
                f"Failed to fetch or scan file {file_path}: {e}",
                extra={"repo": str(ref), "file": file_path}
            )
            return []

        if findings:
            logger.debug(f"{len(findings)} finding(s) in {file_path}")
        return findings

    async def scan_repository(self, ref: RepositoryRef) -> List[Finding]:
        """
        Scan every eligible file of ``ref``.

        A failure to list the tree propagates unchanged. Everything after
        that is isolated per file.

        Returns:
            All findings in batch order, then dispatch order within a batch
        """
        findings: List[Finding] = []

        logger.info(f"Fetching repository tree for {ref.owner}/{ref.repo}...")
        tree = await self.source.get_tree(ref.owner, ref.repo, ref.branch)

        if getattr(tree, "truncated", False):
            logger.warning(
                "Repository tree was truncated. Some files may not be scanned.",
                extra={"repo": str(ref)}
            )

        file_paths = self.select_files(tree)
        batches = chunk_paths(file_paths, self.concurrency_limit)

        logger.info(
            f"Scanning {len(file_paths)} files for secrets "
            f"({self.concurrency_limit} concurrent requests)..."
        )

        with tqdm(
            total=len(file_paths),
            desc="Scanning files",
            unit="file",
            disable=not self.show_progress
        ) as pbar:
            for batch in batches:
                batch_results = await asyncio.gather(
                    *(self._scan_file(ref, file_path) for file_path in batch)
                )
                for file_findings in batch_results:
                    findings.extend(file_findings)
                pbar.update(len(batch))

        logger.info(
            f"Scan complete. Found {len(findings)} potential secret(s)",
            extra={"repo": str(ref), "finding_count": len(findings)}
        )
        return findings


# ===================================================================
# REPORT GENERATION
# ===================================================================

def summarize(findings: Sequence[Finding]) -> Dict[Severity, int]:
    """Count findings per severity, in report order."""
    counts = Counter(finding.severity for finding in findings)
    return {severity: counts.get(severity, 0) for severity in SEVERITY_ORDER}


def group_by_severity(findings: Sequence[Finding]) -> Dict[Severity, List[Finding]]:
    grouped: Dict[Severity, List[Finding]] = {severity: [] for severity in SEVERITY_ORDER}
    for finding in findings:
        grouped[finding.severity].append(finding)
    return grouped


class Reporter(Protocol):
    def generate_report(self, findings: Sequence[Finding]) -> str:
        ...


class ConsoleReporter:
    """Human-readable report grouped by severity."""

    def generate_report(self, findings: Sequence[Finding]) -> str:
        if not findings:
            return "\nNo secrets found!"

        lines = [f"\nFound {len(findings)} potential secret(s):", ""]

        for severity, items in group_by_severity(findings).items():
            if not items:
                continue

            lines.append(f"{severity.value} SEVERITY ({len(items)}):")
            for finding in items:
                lines.append("")
                lines.append(f"  File: {finding.file}:{finding.line}")
                lines.append(f"  Type: {finding.type}")
                lines.append(f"  Match: {finding.match}")
                lines.append(f"  Context:\n{self._indent(finding.context, 4)}")
            lines.append("")

        return "\n".join(lines)

    @staticmethod
    def _indent(text: str, spaces: int) -> str:
        padding = " " * spaces
        return "\n".join(padding + line for line in text.split("\n"))


class JSONReporter:
    """Machine-readable report with a severity summary."""

    def generate_report(self, findings: Sequence[Finding]) -> str:
        counts = summarize(findings)
        report = {
            "summary": {
                "totalFindings": len(findings),
                "highSeverity": counts[Severity.HIGH],
                "mediumSeverity": counts[Severity.MEDIUM],
                "lowSeverity": counts[Severity.LOW],
            },
            "findings": [finding.to_dict() for finding in findings],
        }
        return json.dumps(report, indent=2)


SARIF_LEVELS = {
    Severity.HIGH: "error",
    Severity.MEDIUM: "warning",
    Severity.LOW: "note",
}


def sarif_rule_id(secret_type: str) -> str:
    slug = re.sub(r'[^a-z0-9]+', '-', secret_type.lower()).strip('-')
    return f"secret-scanner/{slug}"


class SARIFReporter:
    """SARIF 2.1.0 report for GitHub code scanning."""

    def generate_report(self, findings: Sequence[Finding]) -> str:
        # Build rules
        rules = []
        seen_types: Dict[str, Severity] = {}
        for finding in findings:
            seen_types.setdefault(finding.type, finding.severity)

        for secret_type in sorted(seen_types):
            rules.append({
                "id": sarif_rule_id(secret_type),
                "name": secret_type,
                "shortDescription": {
                    "text": f"Potential {secret_type} detected"
                },
                "fullDescription": {
                    "text": f"A potential hardcoded {secret_type} was found in the repository."
                },
                "defaultConfiguration": {
                    "level": SARIF_LEVELS[seen_types[secret_type]]
                },
                "properties": {
                    "tags": ["security", "secrets"],
                    "precision": "high"
                }
            })

        # Build results
        results = []
        for finding in findings:
            results.append({
                "ruleId": sarif_rule_id(finding.type),
                "level": SARIF_LEVELS[finding.severity],
                "message": {
                    "text": f"Potential secret: {finding.type} ({finding.severity.value})"
                },
                "locations": [{
                    "physicalLocation": {
                        "artifactLocation": {
                            "uri": finding.file
                        },
                        "region": {
                            "startLine": finding.line,
                            "snippet": {
                                "text": finding.context
                            }
                        }
                    }
                }],
                "properties": {
                    "severity": finding.severity.value,
                    "match": finding.match
                }
            })

        sarif = {
            "$schema": "https://raw.githubusercontent.com/oasis-tcs/sarif-spec/master/Schemata/sarif-schema-2.1.0.json",
            "version": "2.1.0",
            "runs": [{
                "tool": {
                    "driver": {
                        "name": "Repository Secret Scanner",
                        "semanticVersion": __version__,
                        "rules": rules
                    }
                },
                "results": results,
                "invocations": [{
                    "executionSuccessful": True,
                    "endTimeUtc": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')
                }]
            }]
        }
        return json.dumps(sarif, indent=2)


def create_reporter(output_format: str = "console") -> Reporter:
    """Return the reporter for ``output_format``."""
    if output_format == "console":
        return ConsoleReporter()
    if output_format == "json":
        return JSONReporter()
    if output_format == "sarif":
        return SARIFReporter()
    raise ValueError(f"Unknown output format: {output_format}")


def write_output(report: str, output_path: Optional[str] = None) -> None:
    """Print the report, or write it to ``output_path`` when given."""
    if output_path:
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        output_file.write_text(report + "\n", encoding="utf-8")
        logger.info(f"Report written to {output_path}")
    else:
        print(report)


# ===================================================================
# COMMAND LINE INTERFACE
# ===================================================================

def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {value}")
    return number


def positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    parser = argparse.ArgumentParser(
        prog='repo-secret-scanner',
        description='Scan a GitHub repository for exposed secrets',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
ENVIRONMENT VARIABLES:
  GITHUB_TOKEN           GitHub token (used when --token is not given)
  GITHUB_API_URL         API base URL (default: https://api.github.com)
  SCAN_CONCURRENCY       Files fetched in parallel (default: 10)
  FETCH_TIMEOUT_SECONDS  Per-file fetch timeout (default: none)
  FETCH_MAX_ATTEMPTS     Attempts per file fetch (default: 1)

EXIT CODES:
  0   No secrets found
  1   Secrets found, or the scan could not run
  130 Interrupted by user (Ctrl+C)
        '''
    )

    parser.add_argument('-o', '--owner', required=True, help='Repository owner')
    parser.add_argument('-r', '--repo', required=True, help='Repository name')
    parser.add_argument(
        '-b', '--branch',
        default=DEFAULT_BRANCH,
        help=f'Branch to scan (default: {DEFAULT_BRANCH})'
    )
    parser.add_argument(
        '-t', '--token',
        default=GITHUB_TOKEN,
        help='GitHub token (or use GITHUB_TOKEN env)'
    )
    parser.add_argument(
        '-c', '--concurrency',
        type=positive_int,
        default=SCAN_CONCURRENCY,
        help=f'Number of concurrent file requests (default: {SCAN_CONCURRENCY})'
    )
    parser.add_argument(
        '-f', '--format',
        choices=OUTPUT_FORMATS,
        default=OUTPUT_FORMAT,
        help=f'Output format (default: {OUTPUT_FORMAT})'
    )
    parser.add_argument(
        '-e', '--exclude',
        action='append',
        default=[],
        metavar='REGEX',
        help='Exclude paths matching this regex (repeatable)'
    )
    parser.add_argument(
        '--custom-patterns',
        metavar='FILE',
        help='Path to custom regex patterns JSON file'
    )
    parser.add_argument(
        '--output',
        metavar='FILE',
        help='Write the report to FILE instead of stdout'
    )
    parser.add_argument(
        '--timeout',
        type=positive_float,
        default=FETCH_TIMEOUT_SECONDS,
        metavar='SECONDS',
        help='Per-file fetch timeout (default: none)'
    )
    parser.add_argument(
        '--max-attempts',
        type=positive_int,
        default=FETCH_MAX_ATTEMPTS,
        help=f'Attempts per file fetch before skipping it (default: {FETCH_MAX_ATTEMPTS})'
    )
    parser.add_argument(
        '--log-format',
        choices=['text', 'json'],
        default=LOG_FORMAT,
        help=f'Logging format (default: {LOG_FORMAT})'
    )
    parser.add_argument(
        '--progress',
        action='store_true',
        help='Show a progress bar while scanning'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose debug logging'
    )
    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    return parser


@dataclass
class ScanOutcome:
    """Exit code plus whatever the scan produced."""
    exit_code: int
    findings: List[Finding] = field(default_factory=list)
    error: Optional[BaseException] = None


async def perform_scan(
    args: argparse.Namespace,
    source: Optional[RepositorySource] = None,
    reporter: Optional[Reporter] = None
) -> ScanOutcome:
    """
    Run one scan and emit its report.

    Args:
        args: Parsed command-line arguments
        source: Repository source; a GitHub source is created when omitted
        reporter: Reporter; chosen from ``args.format`` when omitted

    Returns:
        ScanOutcome with exit code 0 for no findings, 1 for findings or error
    """
    owns_source = source is None
    if owns_source:
        source = GitHubRepositorySource(token=args.token)

    try:
        catalog = None
        if args.custom_patterns:
            catalog = build_catalog(load_custom_patterns(args.custom_patterns))

        scanner = SecretScanner(
            source,
            exclude_patterns=args.exclude,
            concurrency_limit=args.concurrency,
            catalog=catalog,
            fetch_policy=FetchPolicy(max_attempts=args.max_attempts, timeout=args.timeout),
            show_progress=args.progress
        )
        ref = RepositoryRef(args.owner, args.repo, args.branch)

        logger.info(f"Starting scan of {ref}...")
        findings = await scanner.scan_repository(ref)

        selected_reporter = reporter or create_reporter(args.format)
        write_output(selected_reporter.generate_report(findings), args.output)

        return ScanOutcome(exit_code=1 if findings else 0, findings=findings)

    except Exception as e:
        logger.error(f"Error: {e}")
        return ScanOutcome(exit_code=1, error=e)

    finally:
        if owns_source:
            await source.close()


# ===================================================================
# MAIN ENTRY POINT
# ===================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    setup_logging(args.log_format, level)

    try:
        outcome = asyncio.run(perform_scan(args))
    except KeyboardInterrupt:
        logger.warning("Scan interrupted by user")
        return 130

    return outcome.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
