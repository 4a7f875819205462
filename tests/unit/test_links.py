"""Tests for link parsing, backlinks and transclusion."""

import sqlite3

from outline_kb.core.links.graph import BROKEN_REFERENCE, parse_references, sync_links
from outline_kb.core.pages.notes import create_note
from outline_kb.core.tree.outline import create_node
from outline_kb.models.node import LinkKind, UnresolvedTarget
from outline_kb.repository import Repository


def test_parse_wiki_and_transclusion() -> None:
    refs = parse_references("see [[Beta]] and ![[Gamma#n-1]]")
    assert [(r.kind, r.title, r.anchor) for r in refs] == [
        (LinkKind.WIKI, "Beta", None),
        (LinkKind.TRANSCLUSION, "Gamma", "n-1"),
    ]


def test_parse_bang_without_anchor_is_wiki_link() -> None:
    refs = parse_references("wow![[Beta]]")
    assert len(refs) == 1
    assert refs[0].kind is LinkKind.WIKI
    assert refs[0].raw == "[[Beta]]"


def test_parse_deduplicates_exact_titles_only() -> None:
    refs = parse_references("[[Beta]] [[beta]] [[Beta]] [[ ]]")
    assert [r.title for r in refs] == ["Beta", "beta"]


def test_link_to_missing_note_resolves_once_note_exists(repo: Repository) -> None:
    alpha = repo.create_note("Alpha")
    node = repo.create_node(alpha.id, content="see [[Beta]]")

    [link] = repo.unresolved_links()
    assert link.target == UnresolvedTarget("Beta")

    beta = repo.create_note("Beta")
    assert repo.unresolved_links() == []
    [group] = repo.backlinks(beta.id)
    assert group.source_note.id == alpha.id
    [ref] = group.references
    assert ref.node is not None
    assert ref.node.id == node.id
    assert ref.context == "see [[Beta]]"


def test_removing_link_text_removes_backlink(repo: Repository) -> None:
    beta = repo.create_note("Beta")
    alpha = repo.create_note("Alpha")
    node = repo.create_node(alpha.id, content="see [[Beta]]")
    assert len(repo.backlinks(beta.id)) == 1

    repo.update_content(node.id, "nothing here")

    assert repo.backlinks(beta.id) == ()
    assert repo.outgoing_links(node.id) == []


def test_unchanged_links_keep_their_identity(repo: Repository) -> None:
    repo.create_note("Beta")
    alpha = repo.create_note("Alpha")
    node = repo.create_node(alpha.id, content="see [[Beta]]")
    [before] = repo.outgoing_links(node.id)

    repo.update_content(node.id, "still [[Beta]], now also [[Gamma]]")

    links = repo.outgoing_links(node.id)
    assert [link.target_title for link in links] == ["Beta", "Gamma"]
    assert links[0].id == before.id
    assert links[0].is_resolved
    assert not links[1].is_resolved


def test_backlinks_group_by_source_note(repo: Repository) -> None:
    target = repo.create_note("Target")
    first = repo.create_note("First")
    second = repo.create_note("Second")
    repo.create_node(first.id, content="[[Target]] one")
    repo.create_node(first.id, content="[[Target]] two")
    repo.create_node(second.id, content="[[Target]] three")

    groups = repo.backlinks(target.id)

    assert [g.source_note.title for g in groups] == ["First", "Second"]
    assert [r.context for r in groups[0].references] == ["[[Target]] one", "[[Target]] two"]


def test_deleting_target_note_unresolves_links(repo: Repository) -> None:
    beta = repo.create_note("Beta")
    alpha = repo.create_note("Alpha")
    node = repo.create_node(alpha.id, content="see [[Beta]]")

    repo.delete_note(beta.id)

    [link] = repo.outgoing_links(node.id)
    assert link.target == UnresolvedTarget("Beta")
    assert [u.id for u in repo.unresolved_links()] == [link.id]


def test_deleting_source_note_removes_its_links(repo: Repository) -> None:
    beta = repo.create_note("Beta")
    alpha = repo.create_note("Alpha")
    repo.create_node(alpha.id, content="see [[Beta]]")

    repo.delete_note(alpha.id)

    assert repo.backlinks(beta.id) == ()


def test_duplicate_titles_resolve_to_first_created(repo: Repository) -> None:
    first = repo.create_note("Twin")
    second = repo.create_note("Twin")
    source = repo.create_note("Source")
    repo.create_node(source.id, content="[[Twin]]")

    assert len(repo.backlinks(first.id)) == 1
    assert repo.backlinks(second.id) == ()


def test_note_level_link_has_no_source_node(repo: Repository) -> None:
    beta = repo.create_note("Beta")
    alpha = repo.create_note("Alpha")

    link = repo.link_notes(alpha.id, "Beta")

    assert link.source_node_id is None
    [group] = repo.backlinks(beta.id)
    assert group.references[0].node is None


def test_transclusion_is_live_then_broken(repo: Repository) -> None:
    source = repo.create_note("Source")
    quoted = repo.create_node(source.id, content="original words")
    page = repo.create_note("Page")
    repo.create_node(page.id, content=f"![[Source#{quoted.id}]]")

    assert repo.resolve_transclusion("Source", quoted.id).content == "original words"
    assert "original words" in repo.export(page.id)

    repo.update_content(quoted.id, "edited words")
    assert "edited words" in repo.export(page.id)

    repo.delete_node(quoted.id)
    resolved = repo.resolve_transclusion("Source", quoted.id)
    assert resolved.broken
    assert BROKEN_REFERENCE.format(title="Source", node_id=quoted.id) in repo.export(page.id)


def test_transclusion_of_node_from_other_note_is_broken(repo: Repository) -> None:
    source = repo.create_note("Source")
    elsewhere = repo.create_note("Elsewhere")
    node = repo.create_node(elsewhere.id, content="not in source")
    repo.create_node(source.id, content="filler")

    assert repo.resolve_transclusion("Source", node.id).broken
    assert repo.resolve_transclusion("Missing", node.id).broken


def test_transclusion_link_is_recorded(conn: sqlite3.Connection) -> None:
    note = create_note(conn, "Page")
    node = create_node(conn, note_id=note.id, content="x")
    added, removed = sync_links(conn, note_id=note.id, node_id=node.id, text="![[Other#abc]]")

    assert (added, removed) == (1, 0)
    row = conn.execute("SELECT link_type, target_title, anchor FROM links").fetchone()
    assert row == ("transclusion", "Other", "abc")
    assert sync_links(conn, note_id=note.id, node_id=node.id, text="![[Other#abc]]") == (0, 0)


def test_recasing_link_text_resolves_to_exact_title(repo: Repository) -> None:
    beta = repo.create_note("Beta")
    alpha = repo.create_note("Alpha")
    node = repo.create_node(alpha.id, content="see [[beta]]")
    assert repo.backlinks(beta.id) == ()

    repo.update_content(node.id, "see [[Beta]]")

    [link] = repo.outgoing_links(node.id)
    assert link.target_title == "Beta"
    assert link.target_note_id == beta.id
    assert len(repo.backlinks(beta.id)) == 1


def test_rename_moves_links_with_the_title(repo: Repository) -> None:
    beta = repo.create_note("Beta")
    alpha = repo.create_note("Alpha")
    node = repo.create_node(alpha.id, content="see [[Beta]] and [[Gamma]]")

    gamma = repo.rename_note(beta.id, "Gamma")

    [group] = repo.backlinks(gamma.id)
    assert [r.link.target_title for r in group.references] == ["Gamma"]
    assert [u.target_title for u in repo.unresolved_links()] == ["Beta"]

    new_beta = repo.create_note("Beta")
    assert len(repo.backlinks(new_beta.id)) == 1
    assert {link.target_title: link.target_note_id for link in repo.outgoing_links(node.id)} == {
        "Beta": new_beta.id,
        "Gamma": gamma.id,
    }


def test_deleting_first_of_duplicate_titles_moves_links_to_the_other(repo: Repository) -> None:
    first = repo.create_note("Twin")
    second = repo.create_note("Twin")
    source = repo.create_note("Source")
    node = repo.create_node(source.id, content="[[Twin]]")

    repo.delete_note(first.id)

    [link] = repo.outgoing_links(node.id)
    assert link.target_note_id == second.id
    assert len(repo.backlinks(second.id)) == 1


def test_deleting_node_keeps_attachment_link(repo: Repository) -> None:
    note = repo.create_note("Docs")
    node = repo.create_node(note.id, content="scan")
    attachment = repo.attach(note.id, "scan.pdf", b"%PDF", node_id=node.id)

    repo.delete_node(node.id)

    row = repo._writer().execute(
        "SELECT source_note_id, source_node_id FROM links WHERE link_type = 'attachment' AND anchor = ?",
        (attachment.id,),
    ).fetchone()
    assert row == (note.id, None)

    repo.detach(attachment.id)
    assert repo._writer().execute("SELECT COUNT(*) FROM links").fetchone()[0] == 0
