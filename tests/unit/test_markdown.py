"""Tests for markdown rendering of notes."""

from outline_kb.core.tree.markdown import export_stem
from outline_kb.models.node import BlockKind
from outline_kb.repository import Repository


def test_render_note_structure(repo: Repository) -> None:
    note = repo.create_note("Plan")
    intro = repo.create_node(note.id, content="Intro")
    detail = repo.create_node(note.id, parent_id=intro.id, content="Detail")
    repo.toggle_task(detail.id)
    repo.set_completed(detail.id, True)
    open_task = repo.create_node(note.id, parent_id=intro.id, content="Open")
    repo.toggle_task(open_task.id)
    repo.create_node(note.id, content="Wise words", block_kind=BlockKind.QUOTE)
    repo.create_node(note.id, content="x = 1\ny = 2", block_kind=BlockKind.CODE)

    md = repo.export(note.id)

    assert md == (
        "# Plan\n"
        "\n"
        "- Intro\n"
        "    - [x] Detail\n"
        "    - [ ] Open\n"
        "- > Wise words\n"
        "- ```\n"
        "  x = 1\n"
        "  y = 2\n"
        "  ```\n"
    )


def test_render_multiline_content_is_indented(repo: Repository) -> None:
    note = repo.create_note("Lines")
    parent = repo.create_node(note.id, content="top")
    repo.create_node(note.id, parent_id=parent.id, content="one\ntwo")

    assert repo.export(note.id).endswith("    - one\n      two\n")


def test_nested_transclusion_is_expanded(repo: Repository) -> None:
    base = repo.create_note("Base")
    leaf = repo.create_node(base.id, content="leaf text")
    middle = repo.create_note("Middle")
    mid = repo.create_node(middle.id, content=f"before ![[Base#{leaf.id}]]")
    top = repo.create_note("Top")
    repo.create_node(top.id, content=f"![[Middle#{mid.id}]]")

    assert "- before leaf text\n" in repo.export(top.id)


def test_self_transclusion_stops_at_depth_limit(repo: Repository) -> None:
    note = repo.create_note("Loop")
    node = repo.create_node(note.id, content="x")
    repo.update_content(node.id, f"again ![[Loop#{node.id}]]")

    md = repo.export(note.id)

    # The node's own text plus three levels of expansion; the innermost
    # reference is left as written.
    assert md.count("again") == 4
    assert f"![[Loop#{node.id}]]" in md


def test_export_stem_replaces_path_separators() -> None:
    assert export_stem("a/b\\c") == "a-b-c"
