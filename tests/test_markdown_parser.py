"""Tests for todowatch.markdown_parser module."""
from todowatch.markdown_parser import (
    extract_tags,
    extract_title,
    parse,
    parse_checkbox,
    parse_heading,
)
from todowatch.todo_types import TodoItem, TodoSection


REAL_WORLD_TODO = """# Project Roadmap

## SSMD (Market Data)

### Active
- [ ] **Multi-exchange secmaster** [ssmd] - Feb 7
- [ ] **Spread capture research** [ssmd] - Feb 1

### Pending

#### Data Pipeline
- [ ] Kraken Futures WebSocket connector [ssmd]
- [x] Pair ID namespace prefix migration [ssmd] - Feb 7

#### Agent & Signals
- [ ] SQLite checkpointer

### Completed (Recent)
- [x] **Polymarket connector** [ssmd/varlab] - Feb 6
- [x] **Momentum signal research** [ssmd] - Feb 1

## Platform Infrastructure

### Pending
- [ ] Migrate Velero backups to Temporal
- [ ] Disaster Recovery validation

### Completed (Recent)
- [x] Sync Google Drive to Brooklyn NAS
"""


def _all_items(sections: list[TodoSection] | tuple[TodoSection, ...]) -> list[TodoItem]:
    out: list[TodoItem] = []
    for s in sections:
        out.extend(s.iter_items())
    return out


class TestParseBasics:
    def test_simple_checkboxes(self) -> None:
        sections = parse("## Tasks\n- [ ] Uncompleted task\n- [x] Completed task")
        assert len(sections) == 1
        tasks = sections[0]
        assert tasks.heading == "Tasks"
        assert tasks.level == 2
        assert tasks.path == "Tasks"
        assert tasks.all_completed is False
        assert tasks.items == (
            TodoItem(title="Uncompleted task", completed=False, line=2),
            TodoItem(title="Completed task", completed=True, line=3),
        )

    def test_empty_text(self) -> None:
        assert parse("") == []

    def test_whitespace_only(self) -> None:
        assert parse("\n   \n\t\n") == []

    def test_uppercase_x_is_completed(self) -> None:
        sections = parse("## A\n- [X] Shout")
        assert sections[0].items[0].completed is True

    def test_indented_checkbox(self) -> None:
        sections = parse("## A\n    - [ ] Indented")
        assert sections[0].items[0].title == "Indented"
        assert sections[0].items[0].line == 2

    def test_empty_remainder_is_item(self) -> None:
        sections = parse("## A\n- [ ]\n- [x] ")
        items = sections[0].items
        assert len(items) == 2
        assert items[0].title == ""
        assert items[0].completed is False
        assert items[1].title == ""
        assert items[1].completed is True

    def test_marker_without_space_is_not_checkbox(self) -> None:
        sections = parse("## A\n- [x]done\n-[ ] nope\n* [ ] star")
        assert sections[0].items == ()

    def test_ignores_non_checkbox_content(self) -> None:
        text = (
            "## Summary\n"
            "| Col1 | Col2 |\n"
            "|------|------|\n"
            "| a    | b    |\n"
            "\n"
            "Some paragraph text.\n"
            "\n"
            "- [ ] Real task"
        )
        sections = parse(text)
        assert len(sections[0].items) == 1
        assert sections[0].items[0].title == "Real task"
        assert sections[0].items[0].details == ()

    def test_checkbox_before_any_heading_dropped(self) -> None:
        sections = parse("- [ ] Orphan\n## A\n- [ ] Kept")
        assert [i.title for i in _all_items(sections)] == ["Kept"]

    def test_document_without_headings_has_no_sections(self) -> None:
        assert parse("- [ ] one\n- [x] two") == []

    def test_crlf_matches_lf(self) -> None:
        crlf = parse("## T\r\n- [x] a\r\n  note\r\n### U\r\n- [ ] b\r\n")
        lf = parse("## T\n- [x] a\n  note\n### U\n- [ ] b\n")
        assert crlf == lf
        assert crlf[0].heading == "T"
        assert crlf[0].items[0].title == "a"
        assert crlf[0].items[0].details == ("note",)
        assert crlf[0].subsections[0].items[0].line == 5

    def test_parse_is_idempotent(self) -> None:
        assert parse(REAL_WORLD_TODO) == parse(REAL_WORLD_TODO)


class TestHeadings:
    def test_parse_heading_levels(self) -> None:
        assert parse_heading("## Two") == (2, "Two")
        assert parse_heading("#### Four  ") == (4, "Four")
        assert parse_heading("##NoSpace") == (2, "NoSpace")

    def test_level_one_is_not_heading(self) -> None:
        assert parse_heading("# Title") is None
        assert parse("# Title\n- [ ] task") == []

    def test_bodiless_heading_is_not_heading(self) -> None:
        assert parse_heading("##") is None
        assert parse_heading("###   ") is None

    def test_punctuation_only_heading_is_not_heading(self) -> None:
        assert parse_heading("## ---") is None
        assert parse_heading("### ...") is None

    def test_unicode_punctuation_only_heading_is_not_heading(self) -> None:
        assert parse_heading("## —") is None
        assert parse_heading("## …") is None
        assert parse_heading("## · ·") is None
        assert parse_heading("## §§ ¿–") is None

    def test_unicode_heading_text_accepted(self) -> None:
        assert parse_heading("## Tâches") == (2, "Tâches")
        assert parse_heading("## — Notes") == (2, "— Notes")
        assert parse_heading("## \U0001f680") == (2, "\U0001f680")

    def test_non_heading_hash_line_falls_through_to_detail(self) -> None:
        sections = parse("## A\n- [ ] T\n##\n## ---\n- [ ] U")
        assert len(sections) == 1
        first, second = sections[0].items
        assert first.details == ("##", "## ---")
        assert second.title == "U"

    def test_nested_headings(self) -> None:
        text = "## SSMD\n### Active\n- [ ] Task A\n### Pending\n- [ ] Task B\n- [ ] Task C"
        sections = parse(text)
        assert len(sections) == 1
        ssmd = sections[0]
        assert ssmd.items == ()
        assert [s.heading for s in ssmd.subsections] == ["Active", "Pending"]
        assert len(ssmd.subsections[0].items) == 1
        assert len(ssmd.subsections[1].items) == 2

    def test_deeply_nested(self) -> None:
        sections = parse("## Domain\n### Category\n#### Subcategory\n- [ ] Deep task")
        deep = sections[0].subsections[0].subsections[0]
        assert deep.heading == "Subcategory"
        assert deep.level == 4
        assert deep.path == "Domain/Category/Subcategory"
        assert deep.items[0].title == "Deep task"

    def test_skipped_level_then_shallower_sibling(self) -> None:
        sections = parse("## A\n#### Deep\n- [ ] d\n### Mid\n- [ ] m")
        a = sections[0]
        assert [(s.heading, s.level) for s in a.subsections] == [("Deep", 4), ("Mid", 3)]
        assert a.subsections[1].path == "A/Mid"

    def test_shallower_heading_starts_new_root(self) -> None:
        sections = parse("### First\n- [ ] one\n## Second\n- [ ] two")
        assert [(s.heading, s.level) for s in sections] == [("First", 3), ("Second", 2)]

    def test_subsections_always_deeper(self) -> None:
        def check(section: TodoSection) -> None:
            for sub in section.subsections:
                assert sub.level > section.level
                check(sub)

        for section in parse(REAL_WORLD_TODO):
            check(section)


class TestTitlesAndTags:
    def test_bold_title_and_tags(self) -> None:
        item = parse("## Work\n- [ ] **Multi-exchange secmaster** [ssmd] - Feb 7")[0].items[0]
        assert item.title == "Multi-exchange secmaster"
        assert item.tags == ("ssmd",)

    def test_title_truncated_at_bracket(self) -> None:
        assert extract_title("Kraken Futures WebSocket connector [ssmd]") == (
            "Kraken Futures WebSocket connector"
        )

    def test_title_truncated_at_dash(self) -> None:
        assert extract_title("Ship it - tomorrow [a] [b]") == "Ship it"
        assert extract_title("Pair ID migration [ssmd] - Feb 7") == "Pair ID migration"

    def test_hyphenated_words_kept(self) -> None:
        assert extract_title("Re-run the back-fill") == "Re-run the back-fill"

    def test_unclosed_bold_falls_back_to_truncation(self) -> None:
        assert extract_title("**Half bold [x1]") == "**Half bold"

    def test_tags_in_order_with_duplicates(self) -> None:
        assert extract_tags("Ship it [a] [b/c] [a]") == ("a", "b/c", "a")

    def test_tags_must_start_with_letter(self) -> None:
        assert extract_tags("Fix [2024] thing [ops] [ ] [x-y]") == ("ops",)

    def test_tags_scan_full_remainder(self) -> None:
        item = parse_checkbox("- [ ] **Bold** trailing [late]", 7)
        assert item is not None
        assert item.title == "Bold"
        assert item.tags == ("late",)
        assert item.line == 7

    def test_parse_checkbox_rejects_plain_line(self) -> None:
        assert parse_checkbox("- plain bullet", 1) is None


class TestDetails:
    def test_detail_lines_attach_to_item(self) -> None:
        text = "## Section\n- [ ] Task with details\n  Some detail line\n  Another detail"
        item = parse(text)[0].items[0]
        assert item.details == ("Some detail line", "Another detail")

    def test_details_flush_on_new_checkbox(self) -> None:
        text = "## Section\n- [ ] First task\n  Detail for first\n- [ ] Second task"
        first, second = parse(text)[0].items
        assert first.details == ("Detail for first",)
        assert second.details == ()

    def test_leading_dash_stripped(self) -> None:
        text = "## Section\n- [ ] Task\n  - sub note\n  -- not a list dash"
        item = parse(text)[0].items[0]
        assert item.details == ("sub note", "-- not a list dash")

    def test_blank_lines_are_not_details(self) -> None:
        text = "## Section\n- [ ] Task\n\n   \nnote"
        assert parse(text)[0].items[0].details == ("note",)

    def test_details_end_at_heading(self) -> None:
        text = "## A\n- [ ] T\nnote\n### B\nstray in B\n- [ ] U\n## C\nstray in C"
        a = parse(text)[0]
        assert a.items[0].details == ("note",)
        b = a.subsections[0]
        assert b.items[0].title == "U"
        assert b.items[0].details == ()

    def test_lines_before_first_item_ignored(self) -> None:
        text = "## A\npreamble\n- [ ] T\nafter"
        item = parse(text)[0].items[0]
        assert item.details == ("after",)


class TestAllCompleted:
    def test_all_done(self) -> None:
        sections = parse("## Done\n- [x] Task A\n- [x] Task B")
        assert sections[0].all_completed is True

    def test_one_open(self) -> None:
        sections = parse("## Done\n- [x] Task A\n- [ ] Task B")
        assert sections[0].all_completed is False

    def test_empty_section_is_vacuously_complete(self) -> None:
        sections = parse("## Empty\n## Next\n- [ ] t")
        assert sections[0].all_completed is True
        assert sections[1].all_completed is False

    def test_aggregates_through_subsections(self) -> None:
        text = (
            "## Root\n- [x] Root item\n"
            "### Sub A\n- [x] A1\n- [x] A2\n"
            "### Sub B\n- [x] B1\n"
            "#### Deep\n- [ ] Deep item"
        )
        root = parse(text)[0]
        assert len(root.items) == 1
        sub_a, sub_b = root.subsections
        assert sub_a.all_completed is True
        assert sub_b.all_completed is False
        assert sub_b.subsections[0].all_completed is False
        assert root.all_completed is False

    def test_section_with_only_empty_subsections(self) -> None:
        root = parse("## Root\n### Empty\n### AlsoEmpty")[0]
        assert root.all_completed is True


class TestRealWorld:
    def test_structure(self) -> None:
        sections = parse(REAL_WORLD_TODO)
        assert [s.heading for s in sections] == ["SSMD (Market Data)", "Platform Infrastructure"]

        ssmd = sections[0]
        assert [s.heading for s in ssmd.subsections] == ["Active", "Pending", "Completed (Recent)"]
        assert len(ssmd.subsections[0].items) == 2

        pending = ssmd.subsections[1]
        assert [s.heading for s in pending.subsections] == ["Data Pipeline", "Agent & Signals"]
        assert len(pending.subsections[0].items) == 2
        assert pending.subsections[0].path == "SSMD (Market Data)/Pending/Data Pipeline"

        completed = ssmd.subsections[2]
        assert completed.all_completed is True
        assert completed.items[0].title == "Polymarket connector"
        assert completed.items[0].tags == ("ssmd/varlab",)

        platform = sections[1]
        assert len(platform.subsections[0].items) == 2
        assert platform.subsections[1].all_completed is True

    def test_every_item_owned_once(self) -> None:
        sections = parse(REAL_WORLD_TODO)
        lines = [i.line for i in _all_items(sections)]
        checkbox_lines = [
            n for n, raw in enumerate(REAL_WORLD_TODO.split("\n"), start=1)
            if raw.strip().startswith(("- [ ]", "- [x]"))
        ]
        assert sorted(lines) == checkbox_lines
        assert len(set(lines)) == len(lines)

    def test_line_numbers(self) -> None:
        first = parse(REAL_WORLD_TODO)[0].subsections[0].items[0]
        assert first.line == 6
        assert first.title == "Multi-exchange secmaster"
