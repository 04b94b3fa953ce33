"""
Duplicate group source and resolver.

Pairs flagged by the database's `find_duplicate_pairs()` are clustered into
transitive groups (A~B and B~C gives {A, B, C}), decorated with lesson details
and filtered against previously dismissed groups. Archiving and dismissal are
delegated to the database; this module only sequences the calls.
"""
import hashlib
import logging
import re
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Set

from models_duplicates import (
    DismissMethod,
    DismissResult,
    DuplicateGroup,
    DuplicatePair,
    GroupResolution,
    LessonSummary,
    ResolveResult,
    group_key,
)

logger = logging.getLogger("lesson_admin")

VALID_PAIR_METHODS = ("both", "same_title", "embedding")
CONFIDENCE_ORDER = {"high": 0, "medium": 1, "low": 2}
GROUP_ID_PATTERN = re.compile(r"^group_[0-9a-f]{12}$")


class ArchiveRejected(Exception):
    """The archive procedure answered with success=false."""


class UnionFind:
    """Disjoint sets over lesson ids with path compression and union by rank."""

    def __init__(self) -> None:
        self.parent: Dict[str, str] = {}
        self.rank: Dict[str, int] = {}

    def make_set(self, x: str) -> None:
        if x not in self.parent:
            self.parent[x] = x
            self.rank[x] = 0

    def find(self, x: str) -> str:
        self.make_set(x)
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, x: str, y: str) -> None:
        root_x = self.find(x)
        root_y = self.find(y)
        if root_x == root_y:
            return
        if self.rank[root_x] < self.rank[root_y]:
            self.parent[root_x] = root_y
        elif self.rank[root_x] > self.rank[root_y]:
            self.parent[root_y] = root_x
        else:
            self.parent[root_y] = root_x
            self.rank[root_x] += 1


def make_group_id(lesson_ids: Iterable[str]) -> str:
    """Group id derived from the lesson set, so it survives reloads and reordering."""
    digest = hashlib.sha1(group_key(list(lesson_ids)).encode("utf-8")).hexdigest()
    return f"group_{digest[:12]}"


def normalize_pair(row: Dict) -> DuplicatePair:
    method = row.get("detection_method")
    if method not in VALID_PAIR_METHODS:
        logger.warning(f"Unexpected detection_method from database: {method}, defaulting to 'embedding'")
        method = "embedding"
    return DuplicatePair(
        id1=row["id1"],
        id2=row["id2"],
        title1=row.get("title1"),
        title2=row.get("title2"),
        detection_method=method,
        similarity=row.get("similarity"),
    )


def group_pairs(pairs: List[DuplicatePair]) -> List[List[DuplicatePair]]:
    """Cluster pairs into transitive groups, preserving first-seen order."""
    uf = UnionFind()
    for pair in pairs:
        uf.union(pair.id1, pair.id2)

    grouped: Dict[str, List[DuplicatePair]] = {}
    for pair in pairs:
        grouped.setdefault(uf.find(pair.id1), []).append(pair)
    return list(grouped.values())


def analyze_group(pairs: List[DuplicatePair]) -> Dict:
    """Detection method, confidence and average similarity for one group."""
    methods = {p.detection_method for p in pairs}

    if len(methods) == 1:
        detection_method = pairs[0].detection_method
    elif "both" in methods:
        detection_method = "both"
    else:
        detection_method = "mixed"

    if "both" in methods or ("same_title" in methods and "embedding" in methods):
        confidence = "high"
    elif "same_title" in methods or "embedding" in methods:
        confidence = "medium"
    else:
        confidence = "low"

    similarities = [p.similarity for p in pairs if p.similarity is not None]
    avg_similarity = sum(similarities) / len(similarities) if similarities else None

    return {
        "detection_method": detection_method,
        "confidence": confidence,
        "avg_similarity": avg_similarity,
    }


def lesson_from_row(row: Dict, recommended_canonical: bool = False) -> LessonSummary:
    return LessonSummary(
        lesson_id=row["lesson_id"],
        title=row.get("title") or "Untitled Lesson",
        summary=row.get("summary"),
        content_length=row.get("content_length") or 0,
        grade_levels=row.get("grade_levels") or [],
        has_table_format=bool(row.get("has_table_format")),
        has_summary=bool(row.get("has_summary")),
        file_link=row.get("file_link"),
        content_preview=row.get("content_preview"),
        recommended_canonical=recommended_canonical,
    )


def build_groups(
    pairs: List[DuplicatePair],
    lesson_details: List[Dict],
    dismissed_keys: Optional[Set[str]] = None,
    recommended: Optional[Dict[str, List[str]]] = None,
) -> List[DuplicateGroup]:
    """
    Turn raw pairs + lesson rows into review groups.

    Groups whose lesson set was dismissed are dropped. `recommended` maps a
    group key to the lesson ids the offline report suggests keeping.
    """
    dismissed_keys = dismissed_keys or set()
    recommended = recommended or {}
    lesson_map = {row["lesson_id"]: row for row in lesson_details}

    groups: List[DuplicateGroup] = []
    for pairs_in_group in group_pairs(pairs):
        lesson_ids: List[str] = []
        for pair in pairs_in_group:
            for lesson_id in (pair.id1, pair.id2):
                if lesson_id not in lesson_ids:
                    lesson_ids.append(lesson_id)

        key = group_key(lesson_ids)
        if key in dismissed_keys:
            continue

        canonical = set(recommended.get(key, []))
        lessons = [
            lesson_from_row(lesson_map[lesson_id], recommended_canonical=lesson_id in canonical)
            for lesson_id in lesson_ids
            if lesson_id in lesson_map
        ]

        groups.append(
            DuplicateGroup(
                group_id=make_group_id(lesson_ids),
                lesson_ids=lesson_ids,
                lessons=lessons,
                pair_count=len(pairs_in_group),
                **analyze_group(pairs_in_group),
            )
        )

    groups.sort(key=lambda g: (CONFIDENCE_ORDER[g.confidence], -len(g.lessons)))
    return groups


def validate_resolution(resolution: GroupResolution) -> Optional[str]:
    """Return an error message if the resolution can't be sent, else None."""
    if not GROUP_ID_PATTERN.match(resolution.group_id):
        return "Invalid group ID format"

    to_keep = [r for r in resolution.resolutions if r.action == "keep"]
    if not to_keep:
        return "At least one lesson must be kept"

    kept_ids = {r.lesson_id for r in to_keep}
    for res in resolution.resolutions:
        if res.action != "archive":
            continue
        if not res.archive_to:
            return f"Lesson {res.lesson_id} to archive must specify which lesson to link to"
        if res.archive_to not in kept_ids:
            return f"Cannot archive {res.lesson_id} to {res.archive_to} - target lesson is not being kept"
    return None


class DuplicateResolver(ABC):
    """Black-box boundary to the data store for the duplicate workflow."""

    @abstractmethod
    def fetch_groups(self, include_resolved: bool = False) -> List[DuplicateGroup]:
        ...

    @abstractmethod
    def resolve(self, resolution: GroupResolution) -> ResolveResult:
        ...

    @abstractmethod
    def dismiss(self, lesson_ids: List[str], detection_method: DismissMethod, reason: str) -> DismissResult:
        ...


class PostgresDuplicateResolver(DuplicateResolver):
    """Resolver backed by the hosted Postgres tables and stored procedures."""

    def __init__(self, reviewer_id: Optional[str] = None, report_path: Optional[str] = None):
        self.reviewer_id = reviewer_id
        self.report_path = report_path

    def fetch_pairs(self) -> List[DuplicatePair]:
        from db_postgres import call_function

        return [normalize_pair(row) for row in call_function("find_duplicate_pairs")]

    def fetch_lesson_details(self, lesson_ids: List[str]) -> List[Dict]:
        from db_postgres import execute_query

        return execute_query(
            "SELECT * FROM get_lesson_details_for_review(%s::text[])",
            (lesson_ids,),
        ) or []

    def fetch_dismissed_keys(self) -> Set[str]:
        from db_postgres import execute_query

        try:
            rows = execute_query("SELECT lesson_ids FROM duplicate_group_dismissals") or []
        except Exception as e:
            logger.warning(f"Could not fetch dismissed groups: {e}")
            return set()
        return {group_key(row["lesson_ids"]) for row in rows if row.get("lesson_ids")}

    def _recommended_canonicals(self) -> Dict[str, List[str]]:
        if not self.report_path:
            return {}
        from services_duplicate_report import ReportFormatError, load_report

        try:
            return load_report(self.report_path).canonical_by_group_key()
        except (OSError, ReportFormatError) as e:
            logger.warning(f"Duplicate report unavailable, skipping canonical hints: {e}")
            return {}

    def fetch_groups(self, include_resolved: bool = False) -> List[DuplicateGroup]:
        pairs = self.fetch_pairs()
        if not pairs:
            return []

        lesson_ids: List[str] = []
        for pair in pairs:
            for lesson_id in (pair.id1, pair.id2):
                if lesson_id not in lesson_ids:
                    lesson_ids.append(lesson_id)

        details = self.fetch_lesson_details(lesson_ids)
        dismissed = set() if include_resolved else self.fetch_dismissed_keys()
        return build_groups(pairs, details, dismissed, self._recommended_canonicals())

    def resolve(self, resolution: GroupResolution) -> ResolveResult:
        from db_postgres import transaction

        error = validate_resolution(resolution)
        if error:
            return ResolveResult(success=False, error=error)

        to_keep = [r for r in resolution.resolutions if r.action == "keep"]
        to_archive = [r for r in resolution.resolutions if r.action == "archive"]

        try:
            with transaction() as cur:
                for res in to_archive:
                    cur.execute(
                        "SELECT archive_duplicate_lesson(%s, %s) AS result",
                        (res.lesson_id, res.archive_to),
                    )
                    row = cur.fetchone()
                    result = row["result"] if row else None
                    if result and not result.get("success"):
                        raise ArchiveRejected(result.get("error") or "Archive function failed")
        except ArchiveRejected as e:
            logger.error(f"Archive function returned error for {resolution.group_id}: {e}")
            return ResolveResult(success=False, error=str(e))

        logger.info(
            f"Resolved duplicate group {resolution.group_id}: kept={len(to_keep)} archived={len(to_archive)}"
        )
        return ResolveResult(success=True, kept_count=len(to_keep), archived_count=len(to_archive))

    def dismiss(self, lesson_ids: List[str], detection_method: DismissMethod, reason: str) -> DismissResult:
        from db_postgres import execute_update

        execute_update(
            """
            INSERT INTO duplicate_group_dismissals (lesson_ids, dismissed_by, detection_method, notes)
            VALUES (%s, %s, %s, %s)
            """,
            (list(lesson_ids), self.reviewer_id, detection_method, reason or "Dismissed via duplicate review interface"),
        )
        logger.info(f"Dismissed duplicate group of {len(lesson_ids)} lessons ({detection_method})")
        return DismissResult(success=True)
