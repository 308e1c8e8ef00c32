"""
Unit tests for lifecycle hooks.

Covers:
- Call order (attribute-level, then instance-level base-then-derived)
- Selector-dependent attribute hooks
- Mutations in before_save hooks
- Failures aborting the operation
- The HookRegistry itself
"""

import pytest

from stowage.component import get_identity_registry
from stowage.runtime import (
    HookDescriptor,
    HookKind,
    HookRegistry,
    StorableComponent,
    after_delete,
    after_load,
    after_save,
    attribute,
    before_delete,
    before_load,
    before_save,
    primary_identifier,
)


def define_models(log):
    class Document(StorableComponent):
        id = primary_identifier()
        title = attribute("string")

        @title.before_save
        def _before_save_title(self):
            log.append("title.before_save")

        @title.after_save
        def _after_save_title(self):
            log.append("title.after_save")

        @title.before_load
        def _before_load_title(self):
            log.append("title.before_load")

        @title.after_load
        def _after_load_title(self):
            log.append("title.after_load")

        @before_save
        def document_before_save(self, selector):
            log.append("Document.before_save")

        @after_save
        def document_after_save(self, selector):
            log.append("Document.after_save")

    class Article(Document):
        slug = attribute("string?")
        body = attribute("string?", before_save=lambda article: log.append("body.before_save"))

        @before_save
        async def article_before_save(self, selector):
            log.append("Article.before_save")
            if "title" in selector:
                self.slug = self.title.lower().replace(" ", "-")

        @after_save
        async def article_after_save(self, selector):
            log.append("Article.after_save")

        @before_load
        def article_before_load(self, selector):
            log.append(("Article.before_load", selector))

        @after_load
        def article_after_load(self, selector):
            log.append(("Article.after_load", selector))

        @before_delete
        def article_before_delete(self, selector):
            log.append("Article.before_delete")

        @after_delete
        def article_after_delete(self, selector):
            log.append("Article.after_delete")

    return Document, Article


@pytest.fixture
def log():
    return []


@pytest.fixture
def Article(store, log):
    _, article_class = define_models(log)
    store.register_storable(article_class)
    return article_class


class TestSaveHooks:
    """Tests for before_save / after_save."""

    @pytest.mark.asyncio
    async def test_call_order(self, Article, log):
        await Article(id="a1", title="Hello World", body="...").save()

        assert log == [
            "title.before_save",
            "body.before_save",
            "Document.before_save",
            "Article.before_save",
            "title.after_save",
            "Document.after_save",
            "Article.after_save",
        ]

    @pytest.mark.asyncio
    async def test_attribute_hook_requires_a_set_attribute(self, Article, log):
        await Article(id="a1", title="Hello World").save()
        assert "body.before_save" not in log

    @pytest.mark.asyncio
    async def test_attribute_hook_requires_a_selected_attribute(self, Article, log):
        article = Article(id="a1", title="Hello World", body="...")
        await article.save()
        log.clear()

        article.title = "Hello Again"
        article.body = "Updated"
        await article.save({"body": True})

        assert "body.before_save" in log
        assert "title.before_save" not in log

    @pytest.mark.asyncio
    async def test_unchanged_instance_runs_no_hooks(self, Article, log):
        article = Article(id="a1", title="Hello World")
        await article.save()
        log.clear()

        await article.save()

        assert log == []

    @pytest.mark.asyncio
    async def test_before_save_changes_are_saved(self, store, Article):
        article = Article(id="a1", title="Hello World")
        await article.save()

        assert store.database.get_collection("Article")[0]["slug"] == "hello-world"

        article.title = "Hello Again"
        await article.save()

        stored = store.database.get_collection("Article")[0]
        assert stored["title"] == "Hello Again"
        assert stored["slug"] == "hello-again"

    @pytest.mark.asyncio
    async def test_failing_hook_aborts_the_save(self, store, log, calls):
        _, Article = define_models(log)
        store.register_storable(Article)

        def refuse(article):
            raise RuntimeError("read-only")

        Article.get_attribute("title").before_save(refuse)
        article = Article(id="a1", title="Hello World")

        with pytest.raises(RuntimeError, match="read-only"):
            await article.save()

        assert article.is_new()
        assert calls("save") == []
        assert store.database.get_collection("Article") == []


class TestLoadHooks:
    """Tests for before_load / after_load."""

    @pytest.mark.asyncio
    async def test_hooks_receive_the_fetched_selector(self, Article, log):
        await Article(id="a1", title="Hello World").save()
        get_identity_registry().clear()
        log.clear()

        await Article.get("a1", {"title": True})

        assert log == [
            "title.before_load",
            ("Article.before_load", {"id": True, "title": True}),
            "title.after_load",
            ("Article.after_load", {"id": True, "title": True}),
        ]

    @pytest.mark.asyncio
    async def test_nothing_to_fetch_runs_no_hooks(self, Article, log):
        article = Article(id="a1", title="Hello World")
        await article.save()
        log.clear()

        await article.load({"title": True})

        assert log == []


class TestDeleteHooks:
    """Tests for before_delete / after_delete."""

    @pytest.mark.asyncio
    async def test_delete_hooks(self, Article, log):
        article = Article(id="a1", title="Hello World")
        await article.save()
        log.clear()

        await article.delete()

        assert log == ["Article.before_delete", "Article.after_delete"]

    @pytest.mark.asyncio
    async def test_after_delete_skipped_when_nothing_was_deleted(self, Article, log):
        article = Article.instantiate({"id": "ghost"})

        await article.delete(throw_if_missing=False)

        assert log == ["Article.before_delete"]


class TestHookRegistry:
    """Tests for the instance-level hook registry."""

    def test_register_and_get(self):
        registry = HookRegistry()
        descriptor = HookDescriptor(
            kind=HookKind.BEFORE_SAVE, name="touch", owner="Article", function=lambda *_: None
        )

        registry.register(descriptor)

        assert registry.get_hooks(HookKind.BEFORE_SAVE) == [descriptor]
        assert registry.get_hooks(HookKind.AFTER_SAVE) == []
        assert registry.count == 1
        assert registry.summary() == {"before_save": 1}

    def test_same_name_replaces_in_place(self):
        registry = HookRegistry()
        for owner in ("Base", "Derived"):
            registry.register(
                HookDescriptor(
                    kind=HookKind.AFTER_LOAD, name="refresh", owner=owner, function=lambda *_: None
                )
            )

        (hook,) = registry.get_hooks(HookKind.AFTER_LOAD)
        assert hook.owner == "Derived"

    def test_copy_is_independent(self):
        registry = HookRegistry()
        copied = registry.copy()
        copied.register(
            HookDescriptor(
                kind=HookKind.BEFORE_DELETE, name="audit", owner="Article", function=lambda *_: None
            )
        )

        assert registry.count == 0
        assert copied.count == 1

    def test_class_registries(self, log):
        Document, Article = define_models(log)

        assert [hook.name for hook in Document.__hook_registry__.get_hooks(HookKind.BEFORE_SAVE)] == [
            "document_before_save"
        ]
        assert [hook.name for hook in Article.__hook_registry__.get_hooks(HookKind.BEFORE_SAVE)] == [
            "document_before_save",
            "article_before_save",
        ]

    def test_override_keeps_position(self, log):
        Document, _ = define_models(log)

        class Report(Document):
            @before_save
            def document_before_save(self, selector):
                log.append("Report.before_save")

        (hook,) = Report.__hook_registry__.get_hooks(HookKind.BEFORE_SAVE)
        assert hook.owner.endswith("Report")
