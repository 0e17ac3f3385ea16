"""Test template system functionality"""

from datetime import datetime, timedelta, timezone

import pytest

from content_publisher.config import Settings
from content_publisher.publisher import (
    AllFallbacksFailedError,
    ConfigurationError,
    Document,
    EvaluationError,
    NoteMeta,
    UninitializedVariableError,
)
from content_publisher.publisher.template_system import (
    ExpressionEvaluator,
    MetadataTemplateProcessor,
    MetadataTemplateProcessorManager,
    TemplateProcessor,
    VariableInitializer,
    array,
    eval_with_try_list,
    simplify,
    to_text,
)

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone(timedelta(hours=9)))


class TestExpressionEvaluator:
    """Test sandboxed expression evaluation"""

    def setup_method(self) -> None:
        self.evaluator = ExpressionEvaluator()
        self.variables = {
            "file": Document(path="blog/Hello World.md"),
            "frontmatter": {"author": "Alice", "tags": ["a", "b"], "nested": {"x": 1}},
            "now": FIXED_NOW,
        }

    def test_member_access(self) -> None:
        assert self.evaluator.evaluate("file.basename", self.variables) == "Hello World"
        assert self.evaluator.evaluate("frontmatter.author", self.variables) == "Alice"
        assert self.evaluator.evaluate("frontmatter.nested.x", self.variables) == 1
        assert self.evaluator.evaluate("frontmatter['author']", self.variables) == "Alice"

    def test_function_calls_and_literals(self) -> None:
        assert (
            self.evaluator.evaluate("now.isoformat()", self.variables)
            == FIXED_NOW.isoformat()
        )
        assert self.evaluator.evaluate("array(frontmatter.tags)", self.variables) == "[a, b]"
        assert self.evaluator.evaluate("'text'", self.variables) == "text"
        assert self.evaluator.evaluate("42", self.variables) == 42
        assert self.evaluator.evaluate("false", self.variables) is False

    def test_undefined_name_is_error(self) -> None:
        with pytest.raises(EvaluationError, match="undefined name"):
            self.evaluator.evaluate("missing.value", self.variables)

    def test_syntax_error(self) -> None:
        with pytest.raises(EvaluationError, match="invalid syntax"):
            self.evaluator.evaluate("file.basename +", self.variables)

    def test_missing_nested_key_is_empty(self) -> None:
        assert self.evaluator.evaluate("frontmatter.draft", self.variables) is None
        assert self.evaluator.evaluate("frontmatter.draft.value", self.variables) is None

    def test_bare_none_is_error(self) -> None:
        with pytest.raises(EvaluationError, match="undefined"):
            self.evaluator.evaluate("value", {"value": None})

    def test_unsafe_access_is_blocked(self) -> None:
        with pytest.raises(EvaluationError):
            self.evaluator.evaluate("file.__init__()", self.variables)

    def test_calling_missing_member_is_error(self) -> None:
        with pytest.raises(EvaluationError):
            self.evaluator.evaluate("frontmatter.nothing()", self.variables)

    @pytest.mark.parametrize(
        "expr",
        [
            "frontmatter.pop('author')",
            "frontmatter.tags.append('c')",
            "frontmatter.update({'author': 'Bob'})",
            "frontmatter.nested.clear()",
        ],
    )
    def test_mutating_calls_are_rejected(self, expr: str) -> None:
        with pytest.raises(EvaluationError):
            self.evaluator.evaluate(expr, self.variables)

        assert self.variables["frontmatter"] == {
            "author": "Alice",
            "tags": ["a", "b"],
            "nested": {"x": 1},
        }

    def test_template_cannot_change_later_results(self) -> None:
        processor = TemplateProcessor({"frontmatter": {"tags": ["a"]}})
        template = "{{frontmatter.tags.append('b') or frontmatter.tags}}"

        for _ in range(2):
            with pytest.raises(EvaluationError):
                processor.eval_template(template)

        assert processor.eval_template("{{frontmatter.tags}}") == "[a]"

    def test_referenced_names_excludes_helpers(self) -> None:
        names = self.evaluator.referenced_names("array(frontmatter.tags) ~ pubSlug")
        assert names == {"frontmatter", "pubSlug"}


class TestTextRendering:
    def test_to_text(self) -> None:
        assert to_text(True) == "true"
        assert to_text(None) == ""
        assert to_text(3) == "3"
        assert to_text(["x", "y"]) == "[x, y]"
        assert to_text(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02T03:04:05"

    def test_array(self) -> None:
        assert array(None) == "[]"
        assert array("solo") == "[solo]"
        assert array(["日本語", "tag"]) == "[日本語, tag]"


class TestSimplify:
    """Test slug normalization"""

    def test_example(self) -> None:
        assert simplify("My Post / Draft!!") == "my-post-draft"

    def test_separators_and_case(self) -> None:
        assert simplify("Guides/Getting Started") == "guides-getting-started"
        assert simplify("a  -  b") == "a-b"
        assert simplify("Tabs\tand\nlines") == "tabs-and-lines"

    def test_unsafe_characters_removed(self) -> None:
        assert simplify("what? <why> #1") == "what-why-1"
        assert simplify("v1.2_beta~x") == "v1.2_beta~x"

    def test_total(self) -> None:
        assert simplify("") == ""
        assert simplify("日本語") == ""
        assert simplify("---") == ""


class TestTemplateProcessor:
    """Test the lazy variable graph"""

    def test_eval_template_inlines_values(self) -> None:
        processor = TemplateProcessor({"name": "World", "count": 2})
        assert processor.eval_template("Hello {{name}} x{{count}}") == "Hello World x2"

    def test_template_without_expressions(self) -> None:
        processor = TemplateProcessor()
        assert processor.eval_template("false") == "false"

    def test_initializers_run_once_with_dependencies(self) -> None:
        calls: list[str] = []

        def build_base(p: TemplateProcessor) -> str:
            calls.append("base")
            return "base"

        def build_derived(p: TemplateProcessor) -> str:
            calls.append("derived")
            return p.variables["base"] + "-derived"

        processor = TemplateProcessor(
            initializers=[
                VariableInitializer("derived", ("base",), build_derived),
                VariableInitializer("base", (), build_base),
            ]
        )

        first = processor.eval_template("{{derived}}")
        second = processor.eval_template("{{derived}}")

        assert first == second == "base-derived"
        assert calls == ["base", "derived"]
        assert {"base", "derived"} <= processor.initialized

    def test_unused_initializers_stay_lazy(self) -> None:
        processor = TemplateProcessor(
            {"a": 1},
            initializers=[VariableInitializer("b", (), lambda p: 1 / 0)],
        )
        assert processor.eval_template("{{a}}") == "1"
        assert "b" not in processor.initialized

    def test_cycle_is_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError, match="Circular"):
            TemplateProcessor(
                initializers=[
                    VariableInitializer("a", ("b",), lambda p: 1),
                    VariableInitializer("b", ("a",), lambda p: 2),
                ]
            )

    def test_set_variable_invalidates_dependents(self) -> None:
        processor = TemplateProcessor(
            {"source": "one"},
            initializers=[
                VariableInitializer("upper", ("source",), lambda p: p.variables["source"].upper())
            ],
        )
        assert processor.eval_template("{{upper}}") == "ONE"
        processor.set_variable("source", "two")
        assert processor.eval_template("{{upper}}") == "TWO"

    def test_failing_initializer_propagates(self) -> None:
        def fail(p: TemplateProcessor) -> str:
            raise UninitializedVariableError("broken", "no data")

        processor = TemplateProcessor(initializers=[VariableInitializer("broken", (), fail)])
        with pytest.raises(UninitializedVariableError):
            processor.eval_template("{{broken}}")
        assert "broken" not in processor.initialized

    def test_scoped_values_are_restored(self) -> None:
        processor = TemplateProcessor(
            {"anchor": ""},
            initializers=[
                VariableInitializer("refer", (), lambda p: "Default"),
                VariableInitializer(
                    "label", ("refer",), lambda p: p.variables["refer"] + "!"
                ),
            ],
        )
        assert processor.eval_template("{{label}}") == "Default!"

        with processor.scoped(refer="alias", anchor="#sec"):
            assert processor.eval_template("{{refer}}{{anchor}}") == "alias#sec"
            assert processor.eval_template("{{label}}") == "alias!"

        assert processor.eval_template("{{refer}}{{anchor}}") == "Default"
        assert processor.eval_template("{{label}}") == "Default!"

    def test_scoped_values_are_restored_on_error(self) -> None:
        processor = TemplateProcessor({"refer": "Note"})

        with pytest.raises(EvaluationError):
            with processor.scoped(refer="alias"):
                processor.eval_template("{{missing}}")

        assert processor.variables["refer"] == "Note"


class TestMetadataTemplateProcessor:
    """Test the per-note metadata variables"""

    def test_note_without_frontmatter(self, processor_manager, memory_store) -> None:
        document = memory_store.add("blog/Plain.md")
        processor = processor_manager.get_processor(document)

        assert processor.eval_template("{{frontmatter.author}}") == ""
        assert processor.variables["frontmatter"] == {}
        assert processor.eval_template("{{pubTime.isoformat()}}") == FIXED_NOW.isoformat()

    def test_timestamps_from_frontmatter(self, processor_manager, memory_store) -> None:
        document = memory_store.add(
            "blog/Dated.md",
            frontmatter={
                NoteMeta.PUB_TS: "2023-03-04T05:06:07+09:00",
                NoteMeta.MOD_TS: 1700000000000,
            },
        )
        processor = processor_manager.get_processor(document)

        assert processor.eval_template("{{pubTime.isoformat()}}") == "2023-03-04T05:06:07+09:00"
        assert processor.require("modTime").timestamp() == 1700000000

    def test_invalid_timestamp(self, processor_manager, memory_store) -> None:
        document = memory_store.add("blog/Bad.md", frontmatter={NoteMeta.PUB_TS: "soon"})
        processor = processor_manager.get_processor(document)
        with pytest.raises(UninitializedVariableError):
            processor.eval_template("{{pubTime}}")

    def test_built_slug_from_related_path(self, processor_manager, memory_store) -> None:
        document = memory_store.add("blog/guides/My First Post.md")
        processor = processor_manager.get_processor(document)

        assert processor.eval_template("{{buiSlug}}") == "guides-my-first-post"
        assert processor.eval_template("{{pubSlug}}") == "guides-my-first-post"

    def test_transliterate_is_applied_per_segment(
        self, publish_settings, memory_store
    ) -> None:
        seen: list[str] = []

        def transliterate(text: str) -> str:
            seen.append(text)
            return text.replace("ü", "ue")

        manager = MetadataTemplateProcessorManager(
            publish_settings, memory_store, transliterate=transliterate
        )
        document = memory_store.add("blog/Über/Grüße.md")

        assert manager.get_processor(document).eval_template("{{buiSlug}}") == "ueber-grue"
        assert seen == ["Über", "Grüße"]

    def test_slug_template(self, publish_settings, memory_store) -> None:
        settings = publish_settings.model_copy(
            update={"slug_template": "{{frontmatter.slug or buiSlug}}"}
        )
        manager = MetadataTemplateProcessorManager(settings, memory_store)
        custom = memory_store.add("blog/A.md", frontmatter={"slug": "Custom Slug"})
        plain = memory_store.add("blog/B.md")

        assert manager.get_processor(custom).eval_template("{{pubSlug}}") == "custom-slug"
        assert manager.get_processor(plain).eval_template("{{pubSlug}}") == "b"

    def test_self_referencing_slug_template(self, publish_settings, memory_store) -> None:
        settings = publish_settings.model_copy(
            update={"slug_template": "{{pubSlug}}-x"}
        )
        with pytest.raises(ConfigurationError, match="pubSlug"):
            MetadataTemplateProcessorManager(settings, memory_store)

    def test_self_reference_checked_before_evaluation(self, memory_store) -> None:
        document = memory_store.add("blog/A.md", frontmatter={"title": "A"})
        with pytest.raises(ConfigurationError):
            MetadataTemplateProcessor(
                document,
                store=memory_store,
                now=FIXED_NOW,
                slug_template="{{frontmatter.title ~ pubSlug}}",
            )
        assert memory_store.frontmatter_reads == {}

    def test_pub_url_requires_published_note(self, processor_manager, memory_store) -> None:
        document = memory_store.add("blog/Draft.md")
        processor = processor_manager.get_processor(document)
        with pytest.raises(UninitializedVariableError, match="not been published"):
            processor.eval_template("{{pubUrl}}")

    def test_refer_defaults_to_note_name(self, processor_manager, memory_store) -> None:
        document = memory_store.add("blog/Named Note.md")
        processor = processor_manager.get_processor(document)
        assert processor.eval_template("{{refer}}") == "Named Note"
        assert processor.eval_template("{{urlPrefix}}") == "https://example.com/posts/"

    def test_log_context_names_the_note(self, processor_manager, memory_store) -> None:
        document = memory_store.add("blog/Logged.md")
        processor = processor_manager.get_processor(document)

        assert processor.log_context() == {"path": "blog/Logged.md"}
        assert TemplateProcessor().log_context() == {}

    def test_eval_template_is_idempotent(self, processor_manager, memory_store) -> None:
        document = memory_store.add("blog/Idem.md", frontmatter={"author": "Bob"})
        processor = processor_manager.get_processor(document)
        template = "{{frontmatter.author}} {{pubSlug}} {{modTime.isoformat()}}"

        assert processor.eval_template(template) == processor.eval_template(template)


class TestProcessorManager:
    """Test the per-run processor cache"""

    def test_processor_is_cached_per_path(self, processor_manager, memory_store) -> None:
        document = memory_store.add("blog/Cached.md")
        first = processor_manager.get_processor(document)
        second = processor_manager.get_processor(Document(path="blog/Cached.md"))

        assert first is second
        assert len(processor_manager) == 1
        assert document in processor_manager

    def test_frontmatter_write_through(self, processor_manager, memory_store) -> None:
        document = memory_store.add("blog/Fresh.md", frontmatter={"author": "Old"})
        processor = processor_manager.get_processor(document)
        assert processor.eval_template("{{frontmatter.author}}") == "Old"

        processor_manager.get_processor(
            document, {"author": "New", NoteMeta.VIEW_URL: "https://x/fresh"}
        )
        assert processor.eval_template("{{frontmatter.author}}") == "New"
        assert processor.eval_template("{{pubUrl}}") == "https://x/fresh"

    def test_prime(self, processor_manager, memory_store) -> None:
        document = memory_store.add("blog/Primed.md")
        processor_manager.prime(document, refer="Primed text")
        assert processor_manager.get_processor(document).eval_template("{{refer}}") == "Primed text"

    def test_clear_starts_new_run(self, publish_settings, memory_store) -> None:
        ticks = iter([FIXED_NOW, datetime(2025, 1, 1).astimezone()])
        manager = MetadataTemplateProcessorManager(
            publish_settings, memory_store, clock=lambda: next(ticks)
        )
        document = memory_store.add("blog/Run.md")
        first = manager.get_processor(document)

        manager.clear()

        assert len(manager) == 0
        assert manager.get_processor(document) is not first
        assert manager.now.year == 2025

    def test_default_settings_slug_template_is_valid(self, memory_store) -> None:
        MetadataTemplateProcessorManager(Settings(), memory_store)


class TestFallbackEvaluation:
    """Test ordered fallback evaluation"""

    def _processor(self, calls: list[str]) -> TemplateProcessor:
        def failing(p: TemplateProcessor) -> str:
            calls.append("A")
            raise UninitializedVariableError("a", "no data")

        def working(p: TemplateProcessor) -> str:
            calls.append("B")
            return "from B"

        def never(p: TemplateProcessor) -> str:
            calls.append("C")
            return "from C"

        return TemplateProcessor(
            initializers=[
                VariableInitializer("a", (), failing),
                VariableInitializer("b", (), working),
                VariableInitializer("c", (), never),
            ]
        )

    def test_first_success_wins(self) -> None:
        calls: list[str] = []
        processor = self._processor(calls)

        result = eval_with_try_list(processor, ["{{a}}", "{{b}}", "{{c}}"])

        assert result == "from B"
        assert calls == ["A", "B"]

    def test_all_failing(self) -> None:
        processor = TemplateProcessor()
        with pytest.raises(AllFallbacksFailedError) as exc_info:
            eval_with_try_list(processor, ["{{x}}", "{{y +}}"])
        assert isinstance(exc_info.value.last_error, EvaluationError)
        assert "invalid syntax" in str(exc_info.value.last_error)

    def test_empty_list(self) -> None:
        with pytest.raises(AllFallbacksFailedError):
            eval_with_try_list(TemplateProcessor(), [])
