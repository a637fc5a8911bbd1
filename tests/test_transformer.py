import unittest


def _issue(**fields):
    from jpdsync.models.issues import SourceIssue

    data = {"summary": "Fix Login Flow", "status": {"name": "Ready"}}
    data.update(fields)
    return SourceIssue.from_api({"key": "MTT-3", "fields": data})


def _mapping(**kwargs):
    from jpdsync.models.sync_config import FieldMapping

    return FieldMapping(**kwargs)


class TemplateTests(unittest.TestCase):
    def test_filters_chain_left_to_right(self):
        from jpdsync.services.transformer import TemplateParser

        data = {"key": "MTT-3", "fields": {"summary": "  Fix Login Flow  "}}

        self.assertEqual(TemplateParser.parse("{{fields.summary | trim | slugify}}", data), "fix-login-flow")
        self.assertEqual(TemplateParser.parse("{{fields.summary | trim | uppercase}}", data), "FIX LOGIN FLOW")
        self.assertEqual(TemplateParser.parse("[{{key}}] {{fields.summary|trim|lowercase}}", data), "[MTT-3] fix login flow")

    def test_replace_join_and_indexed_paths(self):
        from jpdsync.services.transformer import TemplateParser

        data = {"fields": {"summary": "a b c", "tags": [{"value": "x"}, {"value": "y"}]}}

        self.assertEqual(TemplateParser.parse("{{fields.summary | replace(' ', '_')}}", data), "a_b_c")
        self.assertEqual(TemplateParser.parse("{{fields.tags | join(';')}}", data), "x;y")
        self.assertEqual(TemplateParser.parse("{{fields.tags[1].value}}", data), "y")
        self.assertEqual(TemplateParser.parse("{{fields.tags[5].value}}|{{fields.nope}}", data), "|")

    def test_unknown_filter_is_ignored(self):
        from jpdsync.services.transformer import TemplateParser

        self.assertEqual(TemplateParser.parse("{{fields.s | shout}}", {"fields": {"s": "hi"}}), "hi")


class TransformKindTests(unittest.TestCase):
    def test_lookup_maps_and_falls_back_to_raw(self):
        from jpdsync.services.transformer import TransformerEngine

        engine = TransformerEngine()
        mapping = _mapping(source="fields.priority", target="labels", lookup={"High": "priority:high"})

        self.assertEqual(engine.transform(mapping, _issue(priority={"value": "High"})), "priority:high")
        self.assertEqual(engine.transform(mapping, _issue(priority={"value": "Odd"})), "Odd")
        self.assertIsNone(engine.transform(mapping, _issue()))

    def test_lookup_over_multiselect(self):
        from jpdsync.services.transformer import TransformerEngine

        mapping = _mapping(source="fields.teams", target="labels", lookup={"Core": "team:core"})
        issue = _issue(teams=[{"value": "Core"}, {"value": "Web"}])

        self.assertEqual(TransformerEngine().transform(mapping, issue), ["team:core", "Web"])

    def test_direct_copy_unwraps_select_values(self):
        from jpdsync.services.transformer import TransformerEngine

        engine = TransformerEngine()

        self.assertEqual(engine.transform(_mapping(source="fields.cat", target="x"), _issue(cat={"value": "Bug"})), "Bug")
        self.assertEqual(
            engine.transform(_mapping(source=["fields.summary", "key"], target="x"), _issue()),
            {"fields.summary": "Fix Login Flow", "key": "MTT-3"},
        )

    def test_function_wins_over_template_and_lookup(self):
        from jpdsync.services.transformer import TransformKind, kind_of

        mapping = _mapping(source="a", target="b", function="f", template="t", lookup={})

        self.assertIs(kind_of(mapping), TransformKind.CUSTOM_FUNCTION)
        self.assertIs(kind_of(_mapping(source="a", target="b", template="t", lookup={})), TransformKind.TEMPLATE)
        self.assertIs(kind_of(_mapping(source="a", target="b", lookup={})), TransformKind.LOOKUP)
        self.assertIs(kind_of(_mapping(source="a", target="b")), TransformKind.DIRECT)


class FunctionRegistryTests(unittest.TestCase):
    def test_injected_function_receives_resolved_value(self):
        from jpdsync.services.transformer import TransformerEngine

        seen = {}

        def shout(data):
            seen.update(data)
            return data["value"].upper()

        engine = TransformerEngine({"shout": shout})

        result = engine.transform(_mapping(source="fields.summary", target="title", function="shout"), _issue())

        self.assertEqual(result, "FIX LOGIN FLOW")
        self.assertEqual(seen["key"], "MTT-3")

    def test_builtin_functions(self):
        from jpdsync.services.transformer import TransformerEngine

        engine = TransformerEngine()
        description = {"type": "doc", "content": [{"type": "paragraph", "content": [{"type": "text", "text": "Body"}]}]}
        issue = _issue(description=description, roadmap=[{"value": "Now"}, {"value": "Next Quarter"}])

        body = engine.transform(_mapping(source="fields.description", target="body", function="description_markdown"), issue)
        labels = engine.transform(_mapping(source="fields.roadmap", target="labels", function="select_labels"), issue)

        self.assertEqual(body, "Body")
        self.assertEqual(labels, ["now", "next-quarter"])

    def test_unknown_function_is_rejected_up_front(self):
        from jpdsync.errors import ConfigurationError
        from jpdsync.services.transformer import TransformerEngine

        engine = TransformerEngine({"custom": lambda data: data["value"]})

        engine.check_mappings([_mapping(source="a", target="b", function="custom")])
        with self.assertRaises(ConfigurationError):
            engine.check_mappings([_mapping(source="a", target="b", function="missing")])


class PayloadTests(unittest.TestCase):
    def test_labels_accumulate_and_other_targets_overwrite(self):
        from jpdsync.services.transformer import TransformerEngine

        mappings = [
            _mapping(source="fields.summary", target="title"),
            _mapping(source="fields.cat", target="labels", template="category:{{fields.cat.value | slugify}}"),
            _mapping(source="fields.prio", target="labels", lookup={"High": "priority:high"}),
            _mapping(source="fields.missing", target="labels"),
        ]

        payload = TransformerEngine().build_payload(mappings, _issue(cat={"value": "Data Loss"}, prio={"value": "High"}))

        self.assertEqual(payload["title"], "Fix Login Flow")
        self.assertEqual(payload["labels"], ["category:data-loss", "priority:high"])


if __name__ == "__main__":
    unittest.main()
