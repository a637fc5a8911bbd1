import unittest


def _metadata(**overrides):
    from jpdsync.models.issues import SyncMetadata

    data = dict(
        source_id="MTT-12",
        source_updated="2025-01-01T10:00:00.000+0000",
        last_sync="2025-01-02T00:00:00+00:00",
        content_hash="abc123",
        hierarchy_level="story",
        parent_source_id="MTT-1",
        parent_target_ref=4,
        child_source_ids=["MTT-20", "MTT-21"],
        original_link="https://example.atlassian.net/browse/MTT-12",
    )
    data.update(overrides)
    return SyncMetadata(**data)


class MetadataRoundTripTests(unittest.TestCase):
    def test_inject_then_parse_returns_identical_metadata(self):
        from jpdsync.services.metadata import inject_metadata, parse_metadata

        meta = _metadata()
        body = inject_metadata("Some *narrative* text.\n\n- a list", meta)

        self.assertEqual(parse_metadata(body), meta)

    def test_reinject_replaces_only_the_block(self):
        from jpdsync.services.metadata import inject_metadata, parse_metadata

        first = inject_metadata("Intro paragraph.", _metadata())
        edited = first + "\n\nA human added this after the block."
        second = inject_metadata(edited, _metadata(content_hash="def456"))

        self.assertTrue(second.startswith("Intro paragraph.\n\n<!-- jpd-sync-metadata"))
        self.assertTrue(second.endswith("\n\nA human added this after the block."))
        self.assertEqual(second.count("jpd-sync-metadata"), 1)
        self.assertEqual(parse_metadata(second).content_hash, "def456")

    def test_empty_body_gets_only_the_block(self):
        from jpdsync.services.metadata import METADATA_START, inject_metadata

        body = inject_metadata("", _metadata())

        self.assertTrue(body.startswith(METADATA_START))


class MetadataParsingTests(unittest.TestCase):
    def test_last_block_wins_over_quoted_lookalike(self):
        from jpdsync.services.metadata import parse_metadata, render_metadata

        quoted = 'Docs say to look for `<!-- jpd-sync-metadata {"source_id": "FAKE-1"} -->` in bodies.'
        body = quoted + "\n\n" + render_metadata(_metadata())

        self.assertEqual(parse_metadata(body).source_id, "MTT-12")

    def test_malformed_json_is_no_metadata(self):
        from jpdsync.services.metadata import parse_metadata

        body = "text\n\n<!-- jpd-sync-metadata\n{not json\n-->"

        with self.assertLogs("jpdsync.services.metadata", level="WARNING"):
            self.assertIsNone(parse_metadata(body))

    def test_missing_source_id_is_no_metadata(self):
        from jpdsync.services.metadata import parse_metadata

        body = '<!-- jpd-sync-metadata\n{"content_hash": "x"}\n-->'

        self.assertIsNone(parse_metadata(body))

    def test_unterminated_block_is_no_metadata(self):
        from jpdsync.services.metadata import parse_metadata

        self.assertIsNone(parse_metadata('<!-- jpd-sync-metadata\n{"source_id": "MTT-1"}'))
        self.assertIsNone(parse_metadata(None))

    def test_malformed_block_gets_fresh_block_appended(self):
        from jpdsync.services.metadata import inject_metadata, parse_metadata

        body = "text\n\n<!-- jpd-sync-metadata\n{broken\n-->"
        out = inject_metadata(body, _metadata())

        self.assertTrue(out.startswith(body))
        self.assertEqual(parse_metadata(out).source_id, "MTT-12")

    def test_strip_removes_every_block(self):
        from jpdsync.services.metadata import inject_metadata, strip_metadata

        body = inject_metadata("Keep me.", _metadata())

        self.assertEqual(strip_metadata(body), "Keep me.")


if __name__ == "__main__":
    unittest.main()
