"""Tests for Firestore field conversion and the shared models."""

from datetime import datetime

import pytest
from pydantic import ValidationError

from teamtrack_shared import (
    MinuteTracker,
    Priority,
    Role,
    StaffDetails,
    Task,
    UserProfile,
    position_badge,
)
from teamtrack_shared.firestore import (
    document_to_model,
    firestore_to_dict,
    model_to_firestore,
    to_camel,
    to_snake,
)

NOW = datetime(2024, 1, 15, 12, 0)


class TestFieldNames:
    def test_to_camel(self) -> None:
        assert to_camel("due_date") == "dueDate"
        assert to_camel("task_delete_permission") == "taskDeletePermission"
        assert to_camel("title") == "title"

    def test_to_snake(self) -> None:
        assert to_snake("completedBy") == "completed_by"
        assert to_snake("staffDetails") == "staff_details"

    def test_nested_documents(self) -> None:
        data = firestore_to_dict({"staffDetails": {"accessLevel": 2}})
        assert data == {"staff_details": {"access_level": 2}}


class TestModelToFirestore:
    def test_enums_and_nested_models(self) -> None:
        profile = UserProfile(
            id="ignored",
            uid="u1",
            name="Ada",
            email="ada@example.com",
            role=Role.STAFF,
            created_at=NOW,
            staff_details=StaffDetails(department="Ops", access_level=2),
        )
        data = model_to_firestore(profile)

        assert "id" not in data
        assert data["role"] == "staff"
        assert data["staffDetails"]["accessLevel"] == 2
        assert data["createdAt"] == NOW

    def test_exclude(self) -> None:
        task = Task(title="T", due_date=NOW, created_at=NOW, created_by="u1")
        assert "description" not in model_to_firestore(task, exclude={"description"})


class TestDocumentToModel:
    def test_reads_camel_case_with_id(self) -> None:
        task = document_to_model(
            "t1",
            {
                "title": "Report",
                "dueDate": NOW,
                "createdAt": NOW,
                "createdBy": "admin",
                "assignedTo": ["u1"],
                "priority": "high",
            },
            Task,
        )
        assert task.id == "t1"
        assert task.assigned_to == ["u1"]
        assert task.priority == Priority.HIGH
        assert task.completed_by == []

    def test_tracker_minutes_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            document_to_model(
                "T",
                {
                    "date": NOW,
                    "totalMinutes": 0,
                    "description": "Sprint",
                    "createdBy": "admin",
                    "createdAt": NOW,
                },
                MinuteTracker,
            )


class TestPositionBadge:
    def test_known_positions(self) -> None:
        assert position_badge("Leader") == "crown"
        assert position_badge("Co-Leader") == "star"

    def test_unknown_falls_back(self) -> None:
        assert position_badge("Mascot") == "user"
        assert position_badge(None) == "user"
        assert position_badge("") == "user"
