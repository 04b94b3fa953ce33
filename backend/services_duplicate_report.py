"""
Offline duplicate-analysis report.

The analysis script writes a JSON report next to the app; the admin list shows
its per-action summary and the review pages flag the recommended canonical
lessons. Only one schema is read at runtime (version "3.0"). Older reports go
through `upgrade_v2_report` first; anything else is rejected.
"""
import json
import logging
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from models_duplicates import group_key

logger = logging.getLogger("lesson_admin")

REPORT_VERSION = "3.0"
RECOMMENDED_ACTIONS = ("auto_merge", "manual_review", "keep_all", "split_group")

RecommendedAction = Literal["auto_merge", "manual_review", "keep_all", "split_group"]


class ReportFormatError(ValueError):
    """The report file is not a duplicate-analysis report we can read."""


class _ReportModel(BaseModel):
    # Report files are written with camelCase keys
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ReportLesson(_ReportModel):
    lesson_id: str
    title: Optional[str] = None
    last_modified: Optional[str] = None
    created_at: Optional[str] = None
    metadata_completeness: Optional[float] = None
    canonical_score: Optional[float] = None


class ReportInsights(_ReportModel):
    key_differences: List[str] = Field(default_factory=list)
    common_elements: List[str] = Field(default_factory=list)
    quality_issues: List[str] = Field(default_factory=list)
    pedagogical_notes: List[str] = Field(default_factory=list)


class ReportGroup(_ReportModel):
    group_id: str
    category: str = "uncategorized"
    confidence: Literal["high", "medium", "low"] = "medium"
    recommended_action: RecommendedAction = "manual_review"
    recommended_canonical: List[str] = Field(default_factory=list)
    lessons: List[ReportLesson] = Field(default_factory=list)
    insights: ReportInsights = Field(default_factory=ReportInsights)

    @field_validator("recommended_canonical", mode="before")
    @classmethod
    def _canonical_as_list(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return list(value)

    @property
    def lesson_ids(self) -> List[str]:
        return [lesson.lesson_id for lesson in self.lessons]


class DuplicateReport(_ReportModel):
    version: Literal["3.0"]
    analysis_date: Optional[str] = None
    groups: List[ReportGroup] = Field(default_factory=list)

    def canonical_by_group_key(self) -> Dict[str, List[str]]:
        """Map each group's lesson-set key to the lessons the report suggests keeping."""
        return {
            group_key(group.lesson_ids): group.recommended_canonical
            for group in self.groups
            if group.lessons and group.recommended_canonical
        }

    def summary(self) -> Dict[str, Any]:
        by_action = {action: 0 for action in RECOMMENDED_ACTIONS}
        for group in self.groups:
            by_action[group.recommended_action] += 1
        return {
            "version": self.version,
            "analysis_date": self.analysis_date,
            "total_groups": len(self.groups),
            "total_lessons": sum(len(g.lessons) for g in self.groups),
            "by_action": by_action,
        }


def upgrade_v2_report(raw: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert a version 2 report (flat `groups`, per-group `type`) to version 3.

    v2 had no confidence or recommended action; exact-content groups become
    high confidence, everything else medium, and all go to manual review.
    """
    groups = []
    for group in raw.get("groups") or []:
        lessons = group.get("lessons") or []
        canonical = group.get("recommendedCanonical")
        if not canonical:
            canonical = [l["lessonId"] for l in lessons if l.get("isRecommendedCanonical")]
        group_type = group.get("type") or "near"
        groups.append({
            "groupId": group["groupId"],
            "category": group_type,
            "confidence": "high" if group_type == "exact" else "medium",
            "recommendedAction": "manual_review",
            "recommendedCanonical": canonical,
            "lessons": lessons,
        })
    return {
        "version": REPORT_VERSION,
        "analysisDate": raw.get("analysisDate"),
        "groups": groups,
    }


def _flatten_categories(raw: Dict[str, Any]) -> Dict[str, Any]:
    groups = list(raw.get("groups") or [])
    for category, category_groups in (raw.get("categorizedGroups") or {}).items():
        for group in category_groups:
            groups.append({"category": category, **group})
    return {**raw, "groups": groups}


def parse_report(raw: Any) -> DuplicateReport:
    if not isinstance(raw, dict):
        raise ReportFormatError("Report must be a JSON object")

    version = raw.get("version")
    if version is None and "groups" in raw:
        version = "2.0"

    if version == "2.0":
        raw = upgrade_v2_report(raw)
    elif version == REPORT_VERSION:
        raw = _flatten_categories(raw)
    else:
        raise ReportFormatError(f"Unsupported report version: {version}")

    try:
        return DuplicateReport.model_validate(raw)
    except ValidationError as e:
        raise ReportFormatError(f"Invalid duplicate report: {e.error_count()} validation errors") from e


def load_report(path: str) -> DuplicateReport:
    """Read and parse the report at `path`. OSError propagates if the file is missing."""
    with open(path, "r", encoding="utf-8") as f:
        try:
            raw = json.load(f)
        except json.JSONDecodeError as e:
            raise ReportFormatError(f"Report is not valid JSON: {e}") from e
        except UnicodeDecodeError as e:
            raise ReportFormatError(f"Report is not valid UTF-8: {e}") from e
    report = parse_report(raw)
    logger.info(f"Loaded duplicate report {path} ({len(report.groups)} groups)")
    return report
