"""
Unit tests for LIST parsing, folder tree building and flattening.
"""

from app.services.mailbox_tree import build_folder_tree, flatten, parse_list_line


def _make_list_lines() -> list:
    """A realistic LIST reply as aioimaplib returns it (bytes lines)."""
    return [
        b'(\\HasNoChildren) "/" "INBOX"',
        b'(\\HasChildren) "/" "Archive"',
        b'(\\HasNoChildren) "/" "Archive/2024"',
        b'(\\HasNoChildren) "/" "Archive/2025"',
        b'(\\HasNoChildren \\Sent) "/" "Sent Messages"',
        b"LIST completed.",
    ]


class TestParseListLine:
    """Test single LIST line parsing."""

    def test_quoted_name_and_delimiter(self):
        """Flags, delimiter and name are extracted and unquoted."""
        flags, delimiter, name = parse_list_line(b'(\\HasNoChildren \\Sent) "/" "Sent Messages"')

        assert flags == ["\\HasNoChildren", "\\Sent"]
        assert delimiter == "/"
        assert name == "Sent Messages"

    def test_unquoted_name(self):
        """Atom names without quotes are accepted."""
        _, _, name = parse_list_line('(\\HasNoChildren) "." INBOX')
        assert name == "INBOX"

    def test_nil_delimiter(self):
        """NIL delimiter becomes None."""
        _, delimiter, name = parse_list_line(b'(\\Noselect) NIL "Top"')
        assert delimiter is None
        assert name == "Top"

    def test_escaped_quote_in_name(self):
        """Backslash escapes inside quoted names are resolved."""
        _, _, name = parse_list_line(b'() "/" "My \\"Box\\""')
        assert name == 'My "Box"'

    def test_completion_line_is_not_list_data(self):
        """The tagged completion line returns None."""
        assert parse_list_line(b"LIST completed.") is None
        assert parse_list_line(b"") is None


class TestBuildFolderTree:
    """Test nested tree construction."""

    def test_children_nest_under_parent(self):
        """Archive/2024 is stored under Archive's children."""
        tree = build_folder_tree(_make_list_lines())

        assert set(tree) == {"INBOX", "Archive", "Sent Messages"}
        assert set(tree["Archive"]["children"]) == {"2024", "2025"}
        assert tree["Archive"]["attribs"] == ["\\HasChildren"]

    def test_missing_parent_gets_placeholder(self):
        """A child listed without its parent still produces the parent node."""
        tree = build_folder_tree([b'(\\HasNoChildren) "/" "Projects/Alpha"'])

        assert tree["Projects"]["attribs"] == []
        assert "Alpha" in tree["Projects"]["children"]

    def test_parent_listed_after_child_keeps_its_flags(self):
        """A placeholder is filled in when the parent line arrives later."""
        tree = build_folder_tree([
            b'(\\HasNoChildren) "/" "Projects/Alpha"',
            b'(\\HasChildren) "/" "Projects"',
        ])

        assert tree["Projects"]["attribs"] == ["\\HasChildren"]
        assert "Alpha" in tree["Projects"]["children"]

    def test_literal_name_taken_from_next_line(self):
        """A name sent as an IMAP literal is read from the following item."""
        tree = build_folder_tree([
            b'(\\HasNoChildren) "/" {11}',
            bytearray(b"Quoted Name"),
            b"LIST completed.",
        ])

        assert "Quoted Name" in tree

    def test_unparseable_line_is_skipped(self):
        """Garbage lines do not abort the listing."""
        tree = build_folder_tree([b"garbage", b'(\\HasNoChildren) "/" "INBOX"'])
        assert list(tree) == ["INBOX"]


class TestFlatten:
    """Test depth-first flattening."""

    def test_depth_first_preorder(self):
        """Each node is immediately followed by its children, in server order."""
        nodes = flatten(build_folder_tree(_make_list_lines()))

        assert [n.path for n in nodes] == [
            "INBOX",
            "Archive",
            "Archive/2024",
            "Archive/2025",
            "Sent Messages",
        ]

    def test_root_path_equals_name(self):
        """Root nodes have path == name."""
        nodes = flatten(build_folder_tree(_make_list_lines()))
        inbox = nodes[0]

        assert inbox.name == "INBOX"
        assert inbox.path == "INBOX"

    def test_child_path_joins_with_delimiter(self):
        """Nested paths use the folder delimiter."""
        tree = build_folder_tree([
            b'(\\HasChildren) "." "Work"',
            b'(\\HasNoChildren) "." "Work.Clients"',
        ])
        nodes = flatten(tree)

        assert nodes[1].name == "Clients"
        assert nodes[1].path == "Work.Clients"
        assert nodes[1].delimiter == "."

    def test_has_children_reflects_tree(self):
        """hasChildren is derived from the tree, not the server flags."""
        nodes = {n.path: n for n in flatten(build_folder_tree(_make_list_lines()))}

        assert nodes["Archive"].has_children is True
        assert nodes["Archive/2024"].has_children is False
        assert nodes["INBOX"].has_children is False

    def test_flags_are_preserved(self):
        """Server flags are carried to the flattened node."""
        nodes = {n.path: n for n in flatten(build_folder_tree(_make_list_lines()))}
        assert nodes["Sent Messages"].flags == ["\\HasNoChildren", "\\Sent"]

    def test_wire_shape_uses_camel_case(self):
        """Serialized nodes expose hasChildren."""
        node = flatten(build_folder_tree(_make_list_lines()))[1]
        dumped = node.model_dump(by_alias=True)

        assert dumped == {
            "name": "Archive",
            "path": "Archive",
            "delimiter": "/",
            "flags": ["\\HasChildren"],
            "hasChildren": True,
        }

    def test_empty_tree(self):
        """An account with no folders flattens to an empty list."""
        assert flatten({}) == []
