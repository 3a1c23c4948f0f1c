"""Search keyword extraction for tracker queries."""

import re
from pathlib import PurePosixPath

TITLE_NOISE_WORDS = frozenset(
    {
        "the", "a", "an", "is", "are", "was", "were", "be", "been", "has", "have", "had",
        "do", "does", "did", "will", "would", "could", "should", "may", "might", "can",
        "to", "of", "in", "on", "at", "for", "with", "by", "from", "and", "or", "but",
        "not", "no", "if", "when", "how", "what", "why", "this", "that", "it", "its",
        "we", "our", "they", "their",
    }
)  # fmt: skip

COMMIT_STOP_WORDS = frozenset({"should", "could", "would", "there", "their", "about", "which", "these"})
GENERIC_PATH_PARTS = frozenset({"lib", "src", "scripts", "test", "tests", "proto"})
CONVENTIONAL_PREFIX = re.compile(r"^(feat|fix|docs|chore|refactor|test|perf|build|ci|style)(\(.+?\))?!?:\s*")
ISSUE_REFERENCE = re.compile(r"#(\d+)\b")


def extract_title_terms(title: str, limit: int = 5) -> list[str]:
    """Pick up to ``limit`` meaningful words from an issue title."""
    words = re.sub(r"[^\w\s]", " ", title).split()
    return [w for w in words if len(w) > 2 and w.lower() not in TITLE_NOISE_WORDS][:limit]


def extract_release_keywords(changed_files: list[str], commit_subjects: list[str]) -> list[str]:
    """Derive search keywords from a release diff.

    File stems and directory names come first (in diff order), followed by
    up to three long words per commit subject. Duplicates are dropped.
    """
    keywords: dict[str, None] = {}

    for line in changed_files:
        path = PurePosixPath(line.strip())
        if not path.parts:
            continue
        if len(path.stem) > 3:
            keywords.setdefault(path.stem, None)
        for part in path.parts:
            if len(part) > 3 and part not in GENERIC_PATH_PARTS:
                keywords.setdefault(part, None)

    for subject in commit_subjects:
        cleaned = CONVENTIONAL_PREFIX.sub("", subject.strip())
        words = [w for w in cleaned.split() if len(w) > 4 and w.lower() not in COMMIT_STOP_WORDS]
        for word in words[:3]:
            keywords.setdefault(word, None)

    return list(keywords)


def referenced_issue_numbers(commit_subjects: list[str]) -> list[int]:
    """Issue numbers referenced as ``#N`` in commit subjects, first-seen order."""
    numbers: dict[int, None] = {}
    for subject in commit_subjects:
        for match in ISSUE_REFERENCE.finditer(subject):
            numbers.setdefault(int(match.group(1)), None)
    return list(numbers)
