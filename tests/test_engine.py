"""Tests for the consistency engine."""

import pytest

from cochange import ConsistencyEngine, Settings, ViolationReason, check, has_violations
from cochange.engine import match_regions, normalize_path
from cochange.scan import RegionParser
from cochange.snapshot import MemorySnapshotProvider, SnapshotUnavailableError


def block(body: str, *targets: str) -> str:
    lines = ["# if-change", body, "# then-change", *(f"#   {t}" for t in targets), "# end-change"]
    return "\n".join(lines) + "\n"


def reasons(result):
    return [v.reason for v in result]


class TestCorpusScenarios:
    def test_partner_left_unchanged(self, corpus_path, load_tree, downgrade, make_provider):
        new = load_tree(corpus_path, "2-files")
        old = downgrade(new)
        new["2-files/push.sh"] = old["2-files/push.sh"]

        result = check(make_provider(old, new), "old", "new")

        assert len(result) == 1
        v = result.violations[0]
        assert v.reason is ViolationReason.TARGET_UNCHANGED
        assert v.source_file == "2-files/build.sh"
        assert v.target_file == "2-files/push.sh"
        assert (v.start_line, v.end_line) == (3, 4)
        assert v.message == "expected change in 2-files/push.sh due to change in 2-files/build.sh:3-4"
        assert result.summary() == {
            "files_scanned": 2,
            "regions_found": 2,
            "regions_changed": 1,
            "edges_checked": 1,
            "violations": 1,
        }

    def test_both_partners_changed(self, corpus_path, load_tree, downgrade, make_provider):
        new = load_tree(corpus_path, "2-files")

        result = check(make_provider(downgrade(new), new), "old", "new")

        assert len(result) == 0
        assert result.edges_checked == 2

    def test_deleted_target(self, corpus_path, load_tree, downgrade, make_provider):
        new = load_tree(corpus_path, "3-files-incomplete")
        old = downgrade(new)
        old["3-files-incomplete/release.sh"] = b'export VERSION="0.3.0"\n'

        result = check(make_provider(old, new), "old", "new")

        assert reasons(result) == [ViolationReason.TARGET_FILE_MISSING] * 2
        assert [(v.source_file, v.target_file) for v in result] == [
            ("3-files-incomplete/build.sh", "3-files-incomplete/release.sh"),
            ("3-files-incomplete/push.sh", "3-files-incomplete/release.sh"),
        ]
        assert result.violations[0].message == "then-change references file that does not exist: 'release.sh'"

    def test_five_files_with_implicit_close(self, corpus_path, load_tree, downgrade, make_provider):
        new = load_tree(corpus_path, "5-files")
        provider = make_provider(downgrade(new), new)

        result = check(provider, "old", "new", Settings(implicit_close=True))

        assert len(result) == 0
        assert result.regions_found == 5
        assert result.regions_changed == 5
        # Self-references are skipped: 24 declared targets, four of them self.
        assert result.edges_checked == 20

    def test_five_files_strict_close(self, corpus_path, load_tree, downgrade, make_provider):
        new = load_tree(corpus_path, "5-files")

        result = check(make_provider(downgrade(new), new), "old", "new")

        assert reasons(result) == [ViolationReason.MALFORMED_ANNOTATION] * 2
        assert [(v.source_file, v.start_line) for v in result] == [
            ("5-files/push.sh", 4),
            ("5-files/release-prod.sh", 4),
        ]
        assert result.regions_found == 3

    def test_unterminated_file_does_not_hide_other_findings(
        self, corpus_path, load_tree, downgrade, make_provider
    ):
        new = {**load_tree(corpus_path, "unterminated"), **load_tree(corpus_path, "2-files")}
        old = downgrade(new)
        new["2-files/push.sh"] = old["2-files/push.sh"]

        result = check(make_provider(old, new), "old", "new")

        assert [(v.source_file, v.reason, v.start_line) for v in result] == [
            ("2-files/build.sh", ViolationReason.TARGET_UNCHANGED, 3),
            ("unterminated/deploy.sh", ViolationReason.MALFORMED_ANNOTATION, 4),
        ]
        assert str(result.violations[1]) == (
            "unterminated/deploy.sh:4 - [MalformedAnnotation] then-change block is not closed by end-change"
        )

    def test_result_is_independent_of_worker_count(self, corpus, downgrade, make_provider):
        old = downgrade(corpus, keep={"2-files/push.sh", "5-files/build.sh"})
        provider = make_provider(old, corpus)

        serial = check(provider, "old", "new", Settings(implicit_close=True))
        parallel = check(provider, "old", "new", Settings(implicit_close=True, workers=8))

        assert serial.violations
        assert parallel.violations == serial.violations
        assert parallel.summary() == serial.summary()

    def test_check_is_idempotent(self, corpus, downgrade, make_provider):
        provider = make_provider(downgrade(corpus, keep={"2-files/push.sh"}), corpus)
        engine = ConsistencyEngine(provider)

        assert engine.check("old", "new").violations == engine.check("old", "new").violations


class TestChangeRules:
    def test_identical_snapshots_have_no_violations(self, corpus, make_provider):
        provider = make_provider(corpus, corpus)

        result = check(provider, "old", "new", Settings(implicit_close=True))

        assert len(result) == 0
        assert result.regions_changed == 0
        assert not has_violations(provider, "old", "new", Settings(implicit_close=True))

    def test_change_outside_region_imposes_nothing(self, make_provider):
        old = {"a.sh": block("x", "b.sh"), "b.sh": "b\n"}
        new = {"a.sh": block("x", "b.sh") + "echo appended\n", "b.sh": "b\n"}

        assert len(check(make_provider(old, new), "old", "new")) == 0

    def test_whitespace_only_change_counts(self, make_provider):
        old = {"a.sh": block("x", "b.sh"), "b.sh": "b\n"}
        new = {"a.sh": block("x ", "b.sh"), "b.sh": "b\n"}

        assert reasons(check(make_provider(old, new), "old", "new")) == [ViolationReason.TARGET_UNCHANGED]

    def test_target_change_anywhere_satisfies(self, make_provider):
        old = {"a.sh": block("x", "b.sh"), "b.sh": "b\n"}
        new = {"a.sh": block("y", "b.sh"), "b.sh": "b\nunrelated line\n"}

        assert len(check(make_provider(old, new), "old", "new")) == 0

    def test_self_target_never_violates(self, make_provider):
        old = {"a.sh": block("x", "a.sh")}
        new = {"a.sh": block("y", "a.sh")}

        result = check(make_provider(old, new), "old", "new")

        assert len(result) == 0
        assert result.regions_changed == 1
        assert result.edges_checked == 0

    def test_new_file_regions_are_changed(self, make_provider):
        old = {"b.sh": "b\n"}
        new = {"a.sh": block("x", "b.sh"), "b.sh": "b\n"}

        assert reasons(check(make_provider(old, new), "old", "new")) == [ViolationReason.TARGET_UNCHANGED]

    def test_created_target_counts_as_changed(self, make_provider):
        old = {"a.sh": block("x", "b.sh")}
        new = {"a.sh": block("y", "b.sh"), "b.sh": "b\n"}

        assert len(check(make_provider(old, new), "old", "new")) == 0

    def test_removed_region_imposes_nothing(self, make_provider):
        old = {"a.sh": block("x", "b.sh"), "b.sh": "b\n"}
        new = {"a.sh": "x\n", "b.sh": "b\n"}

        result = check(make_provider(old, new), "old", "new")

        assert len(result) == 0
        assert result.regions_found == 0

    def test_each_target_is_checked(self, make_provider):
        old = {"a.sh": block("x", "b.sh", "c.sh", "d.sh"), "b.sh": "b\n", "c.sh": "c\n"}
        new = {"a.sh": block("y", "b.sh", "c.sh", "d.sh"), "b.sh": "b2\n", "c.sh": "c\n"}

        result = check(make_provider(old, new), "old", "new")

        assert [(v.reason, v.target_file) for v in result] == [
            (ViolationReason.TARGET_UNCHANGED, "c.sh"),
            (ViolationReason.TARGET_FILE_MISSING, "d.sh"),
        ]

    def test_violations_are_ordered(self, make_provider):
        old = {
            "z.sh": block("z", "t1.sh"),
            "a.sh": block("a1", "t2.sh", "t1.sh") + block("a2", "t1.sh"),
            "t1.sh": "1\n",
            "t2.sh": "2\n",
        }
        new = {
            "z.sh": block("z!", "t1.sh"),
            "a.sh": block("a1!", "t2.sh", "t1.sh") + block("a2!", "t1.sh"),
            "t1.sh": "1\n",
            "t2.sh": "2\n",
        }

        result = check(make_provider(old, new), "old", "new")

        assert [(v.source_file, v.start_line, v.target_file) for v in result] == [
            ("a.sh", 2, "t2.sh"),
            ("a.sh", 2, "t1.sh"),
            ("a.sh", 8, "t1.sh"),
            ("z.sh", 2, "t1.sh"),
        ]

    def test_malformed_file_keeps_its_well_formed_regions(self, make_provider):
        old = {"a.sh": block("x", "b.sh"), "b.sh": "b\n"}
        new = {"a.sh": block("y", "b.sh") + "# if-change\n", "b.sh": "b\n"}

        result = check(make_provider(old, new), "old", "new")

        assert [(v.reason, v.start_line) for v in result] == [
            (ViolationReason.TARGET_UNCHANGED, 2),
            (ViolationReason.MALFORMED_ANNOTATION, 6),
        ]

    def test_malformed_old_snapshot_is_not_reported(self, make_provider):
        old = {"a.sh": "# if-change\nx\n", "b.sh": "b\n"}
        new = {"a.sh": block("x", "b.sh"), "b.sh": "b2\n"}

        assert len(check(make_provider(old, new), "old", "new")) == 0

    def test_well_formed_regions_of_malformed_old_snapshot_are_matched(self, make_provider):
        old = {"a.sh": block("x", "b.sh") + "# if-change\n", "b.sh": "b\n"}
        new = {"a.sh": block("x", "b.sh") + "echo fixed\n", "b.sh": "b\n"}

        result = check(make_provider(old, new), "old", "new")

        assert len(result) == 0
        assert result.regions_changed == 0

    def test_target_written_against_comment_marker(self, make_provider):
        old = {"a.sh": "# if-change\nx\n# then-change\n#b.sh\n//c.sh\n# end-change\n", "b.sh": "b\n", "c.sh": "c\n"}
        new = {"a.sh": "# if-change\ny\n# then-change\n#b.sh\n//c.sh\n# end-change\n", "b.sh": "b2\n", "c.sh": "c\n"}

        result = check(make_provider(old, new), "old", "new")

        assert [(v.reason, v.target_file) for v in result] == [(ViolationReason.TARGET_UNCHANGED, "c.sh")]


class TestMatching:
    OLD = {"a.sh": block("x", "b.sh"), "b.sh": "b\n", "c.sh": "c\n"}
    NEW = {"a.sh": block("new", "c.sh") + block("x", "b.sh"), "b.sh": "b\n", "c.sh": "c\n"}

    def test_position_matching_is_conservative(self, make_provider):
        result = check(make_provider(self.OLD, self.NEW), "old", "new")

        assert [v.target_file for v in result] == ["c.sh", "b.sh"]

    def test_sequence_matching_follows_moved_regions(self, make_provider):
        result = check(make_provider(self.OLD, self.NEW), "old", "new", Settings(matching="sequence"))

        assert [v.target_file for v in result] == ["c.sh"]

    def test_match_regions_pairs_by_position(self):
        parser = RegionParser()
        old = parser.parse("a.sh", block("1", "t") + block("2", "t")).regions
        new = parser.parse("a.sh", block("1", "t") + block("2!", "t")).regions

        assert [changed for _, changed in match_regions(old, new)] == [False, True]
        assert [changed for _, changed in match_regions(old, new, "sequence")] == [False, True]
        assert [changed for _, changed in match_regions((), new)] == [True, True]


class TestResolution:
    KNOWN = {"docs/a.md", "docs/b.md", "b.md"}

    def resolve(self, mode, source, target, known=KNOWN):
        engine = ConsistencyEngine(MemorySnapshotProvider(), Settings(resolve=mode))
        return engine.resolve_target(source, target, known)

    def test_auto_prefers_existing_root_path(self):
        assert self.resolve("auto", "docs/a.md", "b.md") == "b.md"
        assert self.resolve("auto", "docs/a.md", "docs/b.md") == "docs/b.md"
        assert self.resolve("auto", "docs/a.md", "b.md", {"docs/b.md"}) == "docs/b.md"
        assert self.resolve("auto", "docs/a.md", "c.md") == "c.md"

    def test_fixed_modes(self):
        assert self.resolve("root", "docs/a.md", "b.md") == "b.md"
        assert self.resolve("file", "docs/a.md", "b.md") == "docs/b.md"
        assert self.resolve("file", "docs/a.md", "../b.md") == "b.md"
        assert self.resolve("root", "docs/a.md", "../b.md") is None

    def test_paths_outside_repository(self):
        for mode in ("auto", "root", "file"):
            assert self.resolve(mode, "docs/a.md", "/etc/passwd") is None
        assert self.resolve("auto", "a.md", "../../outside.md") is None

    def test_escaping_target_is_missing(self, make_provider):
        old = {"a.sh": block("x", "../outside.sh")}
        new = {"a.sh": block("y", "../outside.sh")}

        result = check(make_provider(old, new), "old", "new")

        assert [(v.reason, v.target_file) for v in result] == [
            (ViolationReason.TARGET_FILE_MISSING, "../outside.sh")
        ]

    @pytest.mark.parametrize(
        ("path", "expected"),
        [
            ("a/b.sh", "a/b.sh"),
            ("./a//b.sh", "a/b.sh"),
            ("a/../b.sh", "b.sh"),
            ("", None),
            (".", None),
            ("..", None),
            ("../a.sh", None),
            ("/abs.sh", None),
        ],
    )
    def test_normalize_path(self, path, expected):
        assert normalize_path(path) == expected


class TestExclusionAndErrors:
    def test_excluded_files_are_not_scanned(self, make_provider):
        old = {"vendor/a.sh": block("x", "b.sh"), "b.sh": "b\n"}
        new = {"vendor/a.sh": block("y", "b.sh"), "b.sh": "b\n"}

        result = check(make_provider(old, new), "old", "new", Settings(exclude=("vendor/*",)))

        assert len(result) == 0
        assert result.files_scanned == 1

    def test_excluded_file_is_still_a_target(self, make_provider):
        old = {"a.sh": block("x", "vendor/lib.sh"), "vendor/lib.sh": "v1\n"}
        settings = Settings(exclude=("vendor/*",))

        unchanged = {"a.sh": block("y", "vendor/lib.sh"), "vendor/lib.sh": "v1\n"}
        changed = {"a.sh": block("y", "vendor/lib.sh"), "vendor/lib.sh": "v2\n"}

        assert reasons(check(make_provider(old, unchanged), "old", "new", settings)) == [
            ViolationReason.TARGET_UNCHANGED
        ]
        assert len(check(make_provider(old, changed), "old", "new", settings)) == 0

    def test_unreadable_file_is_reported_and_others_checked(self, make_provider):
        old = {"a.sh": "a\n", "c.sh": block("x", "d.sh"), "d.sh": "d\n"}
        new = {"a.sh": PermissionError("denied"), "c.sh": block("y", "d.sh"), "d.sh": "d\n"}

        result = check(make_provider(old, new), "old", "new")

        assert [(v.source_file, v.reason) for v in result] == [
            ("a.sh", ViolationReason.SNAPSHOT_READ_ERROR),
            ("c.sh", ViolationReason.TARGET_UNCHANGED),
        ]
        assert result.violations[0].message == "cannot read a.sh at new: denied"

    def test_unreadable_target(self, make_provider):
        old = {"a.sh": block("x", "b.sh"), "b.sh": "b\n"}
        new = {"a.sh": block("y", "b.sh"), "b.sh": OSError("i/o error")}

        result = check(make_provider(old, new), "old", "new")

        assert [(v.source_file, v.reason, v.target_file) for v in result] == [
            ("a.sh", ViolationReason.SNAPSHOT_READ_ERROR, "b.sh"),
            ("b.sh", ViolationReason.SNAPSHOT_READ_ERROR, None),
        ]

    def test_unknown_snapshot_is_fatal(self, make_provider):
        provider = make_provider({}, {})

        with pytest.raises(SnapshotUnavailableError):
            check(provider, "old", "missing")
        with pytest.raises(SnapshotUnavailableError):
            has_violations(provider, "missing", "new")
