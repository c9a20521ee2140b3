"""
Pack SCP statements into as few policy documents as the size limit allows.
AWS service control policies have a maximum size of 5120 characters and an
OU or account can carry at most 5 of them.
"""

import json
import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple


# ============================================================================
# PLATFORM LIMITS - Update these if AWS changes the SCP quotas
# ============================================================================

# Maximum characters in one SCP document
MAX_POLICY_SIZE = 5120

# Default and maximum number of SCPs per target (OU/account)
DEFAULT_MAX_FILES = 5
MAX_ALLOWED_FILES = 5

SCP_VERSION = '2012-10-17'

# Empty documents; packing counts everything except the "[]"
SCP_BASE_STRUCTURE = '{"Version":"2012-10-17","Statement":[]}'
SCP_BASE_WITH_WS = '{\n  "Version": "2012-10-17",\n  "Statement": []\n}'

SCP_BASE_SIZE_MINIFIED = len(SCP_BASE_STRUCTURE) - 2  # 37
SCP_BASE_SIZE_WITH_WS = len(SCP_BASE_WITH_WS) - 2     # 46

# ============================================================================
# END OF PLATFORM LIMITS
# ============================================================================


@dataclass
class Statement:
    """One policy statement and its minified character count."""
    content: Dict[str, Any]
    size: int


def minify(value: Any) -> str:
    """Serialize a JSON value without whitespace."""
    return json.dumps(value, separators=(',', ':'), allow_nan=False)


def make_statement(content: Dict[str, Any]) -> Statement:
    return Statement(content=content, size=len(minify(content)))


def _statement_entries(policy: Any) -> Optional[List[Dict[str, Any]]]:
    """Return the statement objects of a parsed policy, None if malformed."""
    if not isinstance(policy, dict):
        return None

    entries = policy.get('Statement', [])
    # A lone statement object is valid policy grammar
    if isinstance(entries, dict):
        entries = [entries]

    if not isinstance(entries, list):
        return None
    if not all(isinstance(entry, dict) for entry in entries):
        return None
    return entries


def _reject_constant(name: str):
    # NaN and Infinity are not JSON
    raise ValueError(f"'{name}' is not valid JSON")


def extract_file_statements(path: str) -> List[Statement]:
    """Extract the statements of one policy file.

    Unreadable or malformed files contribute no statements; the problem is
    logged and the caller carries on with the remaining files.
    """
    try:
        with open(path, 'r', encoding='utf-8') as f:
            policy = json.load(f, parse_constant=_reject_constant)
    except FileNotFoundError:
        print(f"Warning: File '{path}' not found, skipping", file=sys.stderr)
        return []
    except json.JSONDecodeError as e:
        print(f"Warning: Invalid JSON in '{path}': {e.msg}, skipping", file=sys.stderr)
        return []
    except (OSError, UnicodeDecodeError) as e:
        print(f"Warning: Cannot read '{path}': {e}, skipping", file=sys.stderr)
        return []
    except (ValueError, RecursionError) as e:
        # Non-finite constants, oversized integers, excessive nesting
        print(f"Warning: Invalid JSON in '{path}': {e}, skipping", file=sys.stderr)
        return []

    entries = _statement_entries(policy)
    if entries is None:
        print(f"Warning: '{path}' is not a policy document, skipping", file=sys.stderr)
        return []

    return [make_statement(entry) for entry in entries]


def extract_policy_files(files: Sequence[str]) -> List[Tuple[str, List[Statement]]]:
    """Extract each file's statements, paired with the file they came from."""
    extracted = []
    for path in files:
        file_statements = extract_file_statements(path)
        if file_statements:
            print(f"Info: Loaded {len(file_statements)} statements from '{path}'", file=sys.stderr)
        extracted.append((path, file_statements))
    return extracted


def extract_statements(files: Sequence[str]) -> List[Statement]:
    """Collect statements from all files, in file order then document order."""
    return [stmt for _, file_statements in extract_policy_files(files) for stmt in file_statements]


def base_size_for(whitespace: bool) -> int:
    """Size of the document skeleton each output file starts from."""
    return SCP_BASE_SIZE_WITH_WS if whitespace else SCP_BASE_SIZE_MINIFIED


def pack_statements(statements: Sequence[Statement], base_size: int, max_files: int,
                    max_size: int = MAX_POLICY_SIZE) -> Optional[List[List[Statement]]]:
    """Pack statements into at most max_files groups using First-Fit-Decreasing.

    Statements are placed largest first into the first group with room left,
    where every statement after the first in a group also costs one comma.
    Returns the non-empty groups in group order, or None when some statement
    fits in none of the groups. An empty input packs into no groups.
    """
    if max_files < 1:
        raise ValueError(f"max_files must be at least 1, got {max_files}")

    # sorted() is stable, so equal sizes keep their extraction order
    ordered = sorted(statements, key=lambda stmt: stmt.size, reverse=True)

    groups: List[List[Statement]] = [[] for _ in range(max_files)]
    group_sizes = [base_size] * max_files

    for stmt in ordered:
        for i in range(max_files):
            separator = 1 if groups[i] else 0
            if group_sizes[i] + stmt.size + separator <= max_size:
                groups[i].append(stmt)
                group_sizes[i] += stmt.size + separator
                break
        else:
            return None

    return [group for group in groups if group]


def assemble_policy(statements: Sequence[Statement], whitespace: bool = False) -> Tuple[bytes, int]:
    """Build the policy document for a group of statements.

    Returns the encoded document and its length. Output is ASCII-escaped, so
    the length is both the byte count and the character count AWS checks.
    """
    policy = {
        'Version': SCP_VERSION,
        'Statement': [stmt.content for stmt in statements]
    }

    if whitespace:
        text = json.dumps(policy, indent=2, allow_nan=False)
    else:
        text = minify(policy)

    data = text.encode('utf-8')
    return data, len(data)

