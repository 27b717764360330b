"""Static course catalog: search, lookup and enrichment of course options.

The dataset is a JSON list of ``{course_number, title, semester_hours,
description, url, semester}`` records, read once per process and never written.
"""
from __future__ import annotations

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from course_planner.config import settings


logger = logging.getLogger(__name__)

SEMESTER_ORDER = {"Fall": 1, "Spring": 2, "Summer": 3, "Winter": 4}


def match_score(text: str, query: str) -> int:
    text_lc = text.lower()
    if text_lc == query:
        return 100
    if text_lc.startswith(query):
        return 80
    if f" {query}" in text_lc or f"{query} " in text_lc:
        return 60
    if query in text_lc:
        return 40
    return 0


class Catalog:
    def __init__(self, courses: list[dict]):
        self.courses = [c for c in courses if c.get("course_number")]
        self._by_number = {c["course_number"].lower(): c for c in self.courses}

    def __len__(self) -> int:
        return len(self.courses)

    def search_courses(self, query: Optional[str], limit: int = 10) -> list[dict]:
        """Course-number matches first, then title matches, each ranked by match_score."""
        if not query or len(query) < 2:
            return []
        q = query.lower().strip()
        results: list[dict] = []
        seen: set[str] = set()

        for course in self.courses:
            number = course["course_number"]
            if q in number.lower():
                results.append({**course, "matchType": "code", "score": match_score(number, q)})
                seen.add(number)

        if len(results) < limit:
            for course in self.courses:
                if course["course_number"] in seen:
                    continue
                title = course.get("title") or ""
                if q in title.lower():
                    results.append({**course, "matchType": "title", "score": match_score(title, q)})

        results.sort(key=lambda r: (0 if r["matchType"] == "code" else 1, -r["score"]))
        return results[:limit]

    def get_course_by_number(self, course_number: Optional[str]) -> Optional[dict]:
        if not course_number:
            return None
        return self._by_number.get(course_number.lower())

    def get_departments(self) -> list[str]:
        return sorted({c["course_number"].split(" ")[0] for c in self.courses})

    def get_courses_by_department(self, department: str) -> list[dict]:
        prefix = department.upper()
        return [c for c in self.courses if c["course_number"].startswith(prefix)]

    def enhance_course_option(self, option: dict) -> dict:
        course = self.get_course_by_number(option.get("code"))
        if course:
            return {
                **option,
                "name": option.get("name") or course.get("title"),
                "credits": course.get("semester_hours"),
                "semesters": course.get("semester") or [],
                "description": course.get("description") or "",
                "fromCatalog": True,
            }
        return {**option, "semesters": [], "description": "", "fromCatalog": False}

    def is_course_offered_in_semester(self, course_code: str, semester_type: str) -> bool:
        course = self.get_course_by_number(course_code)
        # No offering data means no reason to block the placement.
        if not course or not course.get("semester"):
            return True
        return semester_type in course["semester"]


def format_course_for_display(course: dict) -> dict:
    return {
        "code": course.get("course_number"),
        "name": course.get("title"),
        "credits": course.get("semester_hours"),
        "description": course.get("description"),
        "url": course.get("url"),
    }


def format_semester_list(semesters: Optional[list[str]]) -> str:
    if not semesters:
        return ""
    return ", ".join(sorted(semesters, key=lambda s: SEMESTER_ORDER.get(s, 5)))


def load_catalog(path: str | Path) -> Catalog:
    with open(path, encoding="utf-8") as fh:
        courses = json.load(fh)
    catalog = Catalog(courses)
    logger.info("Loaded %d catalog courses from %s", len(catalog), path)
    return catalog


@lru_cache(maxsize=1)
def get_catalog() -> Catalog:
    return load_catalog(settings.catalog_path)
