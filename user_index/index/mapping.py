"""Mapping for the ``users`` index.

Arrays of objects that are queried element-wise (custom fields, applications,
courses, units, contents, answers) are ``nested``. Names and titles are
``text`` for full-text search; ids, codes and statuses are ``keyword``.
"""

from __future__ import annotations

from typing import Any, Dict

KEYWORD = {"type": "keyword"}
TEXT = {"type": "text"}
TEXT_WITH_KEYWORD = {"type": "text", "fields": {"keyword": {"type": "keyword", "ignore_above": 256}}}
DATE = {"type": "date"}
FLOAT = {"type": "float"}
INTEGER = {"type": "integer"}

ANSWER_PROPERTIES: Dict[str, Any] = {
    "questionId": KEYWORD,
    "type": KEYWORD,
    "submittedAnswer": TEXT,
    "score": FLOAT,
    "reviewStatus": KEYWORD,
}

TRACKING_PROPERTIES: Dict[str, Any] = {
    "percentComplete": FLOAT,
    "lastPosition": FLOAT,
    "currentPosition": FLOAT,
    "timeSpent": INTEGER,
    "questionsAttempted": INTEGER,
    "totalQuestions": INTEGER,
    "score": FLOAT,
    "answers": {"type": "nested", "properties": ANSWER_PROPERTIES},
}

CONTENT_PROPERTIES: Dict[str, Any] = {
    "contentId": KEYWORD,
    "lessonId": KEYWORD,
    "lessonTrackId": KEYWORD,
    "type": KEYWORD,
    "title": TEXT,
    "status": KEYWORD,
    "tracking": {"properties": TRACKING_PROPERTIES},
}

COURSE_PROPERTIES: Dict[str, Any] = {
    "courseId": KEYWORD,
    "courseTitle": TEXT,
    "progress": FLOAT,
    "units": {
        "type": "nested",
        "properties": {
            "unitId": KEYWORD,
            "unitTitle": TEXT,
            "progress": FLOAT,
            "contents": {"type": "nested", "properties": CONTENT_PROPERTIES},
        },
    },
}

APPLICATION_PROPERTIES: Dict[str, Any] = {
    "cohortId": KEYWORD,
    "formId": KEYWORD,
    "submissionId": KEYWORD,
    "cohortmemberstatus": KEYWORD,
    "formstatus": KEYWORD,
    "completionPercentage": FLOAT,
    "progress": {
        "properties": {
            # Page names come from form schemas, so pages stay dynamic.
            "pages": {"type": "object", "dynamic": True},
            "overall": {"properties": {"completed": INTEGER, "total": INTEGER}},
        }
    },
    "lastSavedAt": DATE,
    "submittedAt": DATE,
    "cohortDetails": {
        "properties": {
            "cohortId": KEYWORD,
            "name": TEXT_WITH_KEYWORD,
            "type": KEYWORD,
            "status": KEYWORD,
        }
    },
    "courses": {"type": "nested", "properties": COURSE_PROPERTIES},
}

PROFILE_PROPERTIES: Dict[str, Any] = {
    "userId": KEYWORD,
    "username": KEYWORD,
    "firstName": TEXT_WITH_KEYWORD,
    "lastName": TEXT_WITH_KEYWORD,
    "middleName": TEXT,
    "email": KEYWORD,
    "mobile": KEYWORD,
    "mobile_country_code": KEYWORD,
    "gender": KEYWORD,
    "dob": DATE,
    "address": TEXT,
    "state": KEYWORD,
    "district": KEYWORD,
    "country": KEYWORD,
    "pincode": KEYWORD,
    "status": KEYWORD,
    "customFields": {
        "type": "nested",
        "properties": {
            "fieldId": KEYWORD,
            "code": KEYWORD,
            "label": TEXT,
            "type": KEYWORD,
            "value": TEXT_WITH_KEYWORD,
        },
    },
}

USER_INDEX_MAPPING: Dict[str, Any] = {
    "properties": {
        "userId": KEYWORD,
        "profile": {"properties": PROFILE_PROPERTIES},
        "applications": {"type": "nested", "properties": APPLICATION_PROPERTIES},
        "createdAt": DATE,
        "updatedAt": DATE,
    }
}

USER_INDEX_SETTINGS: Dict[str, Any] = {
    "number_of_shards": 1,
    "number_of_replicas": 1,
}

# Paths of nested arrays, deepest last; used to wrap filters in nested queries.
NESTED_PATHS = (
    "profile.customFields",
    "applications",
    "applications.courses",
    "applications.courses.units",
    "applications.courses.units.contents",
    "applications.courses.units.contents.tracking.answers",
)

__all__ = [
    "NESTED_PATHS",
    "USER_INDEX_MAPPING",
    "USER_INDEX_SETTINGS",
]
