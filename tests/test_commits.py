"""Tests for commit message generation."""

import pytest

from regent.core.commits import extract_scope, generate_commit_message
from regent.core.config import CommitSettings
from regent.core.plan import Step, StepType


def file_step(**kwargs):
    defaults = {"id": "create-model", "type": StepType.CREATE_FILE, "layer": "domain"}
    defaults.update(kwargs)
    return Step(**defaults)


class TestExtractScope:
    @pytest.mark.parametrize(
        "path, expected",
        [
            ("src/features/product/domain/models/product.ts", "domain"),
            ("src/infrastructure/db/user-repository.ts", "infra"),
            ("src/Presentation/controllers/product.ts", "presentation"),
            ("lib/entities/user.ts", "domain"),
            ("lib/use-cases/create-user.ts", "data"),
            ("src/factories/make-controller.ts", "main"),
            ("README.md", "core"),
            (None, "core"),
        ],
    )
    def test_scope(self, path, expected):
        assert extract_scope(path) == expected


class TestGenerateCommitMessage:
    def test_conventional_message(self):
        step = file_step(path="src/domain/models/product.ts", description="Add Product entity")

        message = generate_commit_message(step, CommitSettings())

        subject, _, body = message.partition("\n\n")
        assert subject == "feat(domain): add Product entity"
        assert body == "Step: create-model\nFile: src/domain/models/product.ts"

    def test_type_mapping(self):
        step = file_step(type=StepType.REFACTOR_FILE, path="src/data/usecases/x.ts")

        message = generate_commit_message(step, CommitSettings())

        assert message.startswith("refactor(data): refactor file src/data/usecases/x.ts")

    def test_subject_truncated(self):
        step = file_step(path="src/domain/a.ts", description="Add " + "very " * 30 + "long entity")

        subject = generate_commit_message(step, CommitSettings()).splitlines()[0]

        assert len(subject) <= 72
        assert subject.endswith("...")

    def test_plain_messages(self):
        step = file_step(path="src/domain/a.ts", description="Add entity")

        message = generate_commit_message(step, CommitSettings(conventional_commits=False))

        assert message == "Add entity"

    def test_unmapped_types_not_committed(self):
        assert generate_commit_message(file_step(type=StepType.FOLDER), CommitSettings()) is None
        assert generate_commit_message(file_step(type=StepType.BRANCH), CommitSettings()) is None

    def test_disabled(self):
        step = file_step(path="src/domain/a.ts")

        assert generate_commit_message(step, CommitSettings(enabled=False)) is None
