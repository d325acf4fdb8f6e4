"""Tests for knowledge deduplication, categorisation and persistence."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from docrag.knowledge.dedup import Deduplicator, KnowledgeItem
from docrag.knowledge.extract import extract_doc_links, extract_knowledge
from docrag.knowledge.store import KnowledgeStore, assign_category
from docrag.utils.helpers import load_json

INSTALL = KnowledgeItem(
    problem="Install fails with missing module error",
    solution="Run pnpm install from the repository root",
)


def _mock_generator(*scores: float) -> MagicMock:
    generator = MagicMock()
    generator.text_similarity = AsyncMock(side_effect=list(scores))
    return generator


class TestDeduplicator:
    @pytest.mark.asyncio
    async def test_identical_item_is_duplicate(self, make_generator) -> None:
        dedup = Deduplicator(make_generator(dimensions=1536))
        assert await dedup.is_duplicate(INSTALL.model_copy(), [INSTALL]) is True

    @pytest.mark.asyncio
    async def test_different_solution_is_not_duplicate(self, make_generator) -> None:
        dedup = Deduplicator(make_generator(dimensions=1536))
        item = KnowledgeItem(
            problem=INSTALL.problem, solution="Delete node_modules and clear the bun cache"
        )
        assert await dedup.is_duplicate(item, [INSTALL]) is False

    @pytest.mark.asyncio
    async def test_threshold_is_strict(self) -> None:
        dedup = Deduplicator(_mock_generator(0.85, 0.99))
        assert await dedup.is_duplicate(INSTALL, [INSTALL]) is False

    @pytest.mark.asyncio
    async def test_both_fields_must_match(self) -> None:
        dedup = Deduplicator(_mock_generator(0.99, 0.5, 0.9, 0.9))
        existing = [INSTALL, INSTALL]
        assert await dedup.is_duplicate(INSTALL, existing) is True

    @pytest.mark.asyncio
    async def test_failed_comparison_is_not_duplicate(self) -> None:
        generator = MagicMock()
        generator.text_similarity = AsyncMock(side_effect=RuntimeError("embedding down"))
        dedup = Deduplicator(generator)

        assert await dedup.is_duplicate(INSTALL, [INSTALL]) is False

    @pytest.mark.asyncio
    async def test_filter_new_dedups_within_batch_and_skips_malformed(self, make_generator) -> None:
        dedup = Deduplicator(make_generator(dimensions=1536))
        items = [
            INSTALL.model_dump(),
            INSTALL.model_dump(),
            {"problem": "missing solution"},
            "not a mapping",
        ]

        accepted = await dedup.filter_new(items, [])

        assert len(accepted) == 1
        assert accepted[0].problem == INSTALL.problem


class TestAssignCategory:
    def test_no_categories(self) -> None:
        assert assign_category("anything", []) == "general"

    def test_single_category(self) -> None:
        assert assign_category("anything", ["plugins"]) == "plugins"

    def test_error_keywords(self) -> None:
        text = "The build fails with an exception"
        assert assign_category(text, ["guides", "errors"]) == "errors"

    def test_guide_keywords(self) -> None:
        text = "Step by step tutorial on how to deploy"
        assert assign_category(text, ["errors", "tutorials"]) == "tutorials"

    def test_category_name_is_its_own_keyword(self) -> None:
        assert assign_category("Writing Plugins", ["errors", "plugins"]) == "plugins"

    def test_no_match_uses_first(self) -> None:
        assert assign_category("unrelated text", ["errors", "guides"]) == "errors"


class TestKnowledgeStore:
    @pytest.mark.asyncio
    async def test_add_writes_main_and_category_files(self, tmp_path, make_generator) -> None:
        dedup = Deduplicator(make_generator(dimensions=1536))
        store = KnowledgeStore(tmp_path, dedup, ["errors", "guides"])

        added = await store.add(
            [
                INSTALL,
                KnowledgeItem(
                    problem="How to write a custom action",
                    solution="Follow the step by step guide in the docs",
                ),
            ]
        )

        assert added == 2
        assert len(load_json(tmp_path / "knowledge.json")) == 2
        assert load_json(tmp_path / "errors.json")[0]["problem"] == INSTALL.problem
        assert len(load_json(tmp_path / "guides.json")) == 1

    @pytest.mark.asyncio
    async def test_second_add_skips_duplicates(self, tmp_path, make_generator) -> None:
        store = KnowledgeStore(tmp_path, Deduplicator(make_generator(dimensions=1536)))
        await store.add([INSTALL])

        assert await store.add([INSTALL.model_copy()]) == 0
        assert len(store.load()) == 1

    @pytest.mark.asyncio
    async def test_uncategorised_items_go_to_general(self, tmp_path, make_generator) -> None:
        store = KnowledgeStore(tmp_path, Deduplicator(make_generator(dimensions=1536)))
        await store.add([INSTALL])
        assert (tmp_path / "general.json").exists()

    def test_load_missing_or_malformed(self, tmp_path, make_generator) -> None:
        store = KnowledgeStore(tmp_path, Deduplicator(make_generator(dimensions=1536)))
        assert store.load() == []

        (tmp_path / "knowledge.json").write_text("{broken", encoding="utf-8")
        assert store.load() == []

    def test_load_skips_bad_entries(self, tmp_path, make_generator) -> None:
        (tmp_path / "knowledge.json").write_text(
            '[{"problem": "p", "solution": "s", "source": "discord"}, {"problem": "only"}]',
            encoding="utf-8",
        )
        store = KnowledgeStore(tmp_path, Deduplicator(make_generator(dimensions=1536)))

        items = store.load()

        assert len(items) == 1
        assert items[0].model_dump()["source"] == "discord"


def _msg(role: str, text: str) -> dict:
    return {"role": role, "text": text}


CONVERSATION = {
    "id": "thread-42",
    "messages": [
        _msg("user", "The agent crashes on start"),
        _msg("assistant", "Hello! Let me look."),
        _msg("user", "It says module not found"),
        _msg(
            "assistant",
            "Fixed by running pnpm build first, see https://example.com/docs/quickstart",
        ),
    ],
}


class TestExtractKnowledge:
    def test_solution_with_user_context(self) -> None:
        items = extract_knowledge(CONVERSATION)

        assert len(items) == 1
        item = items[0].model_dump()
        assert item["problem"] == "The agent crashes on start\n\nIt says module not found"
        assert item["solution"].startswith("Fixed by running pnpm build")
        assert item["doc_links"] == ["https://example.com/docs/quickstart"]
        assert item["conversation"] == "thread-42"
        assert item["confidence"] == 0.8

    def test_context_window_limits_problem(self) -> None:
        items = extract_knowledge(CONVERSATION, context_window=1)
        assert items[0].problem == "It says module not found"

    def test_custom_triggers(self) -> None:
        assert extract_knowledge(CONVERSATION, triggers=["workaround"]) == []

    def test_no_user_message_in_window(self) -> None:
        conversation = {
            "messages": [
                _msg("assistant", "Welcome"),
                _msg("assistant", "The issue was resolved upstream"),
            ]
        }
        assert extract_knowledge(conversation) == []

    def test_sender_role_and_bad_messages(self) -> None:
        conversation = {
            "messages": [
                {"sender": {"role": "user"}, "text": "Login error"},
                {"sender": {"role": "user"}},
                "garbage",
                {"sender": {"role": "assistant"}, "text": "Workaround: clear cookies"},
            ]
        }

        items = extract_knowledge(conversation)

        assert [i.problem for i in items] == ["Login error"]

    @pytest.mark.parametrize(
        "conversation",
        [None, "text", [], {}, {"messages": "not a list"}, {"messages": [_msg("user", "hi")]}],
    )
    def test_malformed_conversation_yields_nothing(self, conversation) -> None:
        assert extract_knowledge(conversation) == []

    def test_extract_doc_links(self) -> None:
        text = (
            "See https://github.com/org/repo/wiki/Setup and https://example.com/pricing "
            "or http://docs.example.org/guide."
        )
        assert extract_doc_links(text) == [
            "https://github.com/org/repo/wiki/Setup",
            "http://docs.example.org/guide.",
        ]
        assert extract_doc_links("") == []


class TestAddConversation:
    @pytest.mark.asyncio
    async def test_extracted_items_are_persisted(self, tmp_path, make_generator) -> None:
        store = KnowledgeStore(tmp_path, Deduplicator(make_generator(dimensions=1536)), ["errors"])

        assert await store.add_conversation(CONVERSATION) == 1
        assert await store.add_conversation(CONVERSATION) == 0

        stored = load_json(tmp_path / "knowledge.json")
        assert len(stored) == 1
        assert stored[0]["category"] == "errors"
        assert stored[0]["doc_links"] == ["https://example.com/docs/quickstart"]

    @pytest.mark.asyncio
    async def test_malformed_conversation_writes_nothing(self, tmp_path, make_generator) -> None:
        store = KnowledgeStore(tmp_path, Deduplicator(make_generator(dimensions=1536)))

        assert await store.add_conversation({"id": "empty"}) == 0
        assert not (tmp_path / "knowledge.json").exists()
