"""Tests for templating utilities."""

from types import SimpleNamespace

from django.test import SimpleTestCase

from apps.notify.digest import CallToAction, ContentPreview, Digest, DigestLine
from apps.notify.templating import DigestTemplatingService, render_template

PROJECT = SimpleNamespace(name="Acme", slug="acme", url="https://pages.example.com/projects/acme")


def make_digest(**kwargs):
    defaults = {
        "project_id": 1,
        "recipient": "owner@example.com",
        "subject": "Acme: 3 new article ideas",
        "headline_event": "recommendations_generated",
        "cta": CallToAction(label="Review Recommendations", url="https://x/r"),
        "preview": ContentPreview(type="recommendations", titles=["One", "Two"]),
        "successes": [
            DigestLine(
                event_type="recommendations_generated",
                status="success",
                message="3 new article ideas",
                detail="3 recommendations across all sections",
                next_step="Accept the ones you like, reject the rest.",
            )
        ],
    }
    defaults.update(kwargs)
    return Digest(**defaults)


class RenderTemplateTests(SimpleTestCase):
    def test_empty_spec(self):
        self.assertIsNone(render_template(None, {}))
        self.assertIsNone(render_template("", {}))

    def test_inline_template(self):
        self.assertEqual(render_template("Hello {{ name }}", {"name": "World"}), "Hello World")

    def test_dict_inline_template(self):
        spec = {"type": "inline", "template": "{{ a }}-{{ b }}"}
        self.assertEqual(render_template(spec, {"a": 1, "b": 2}), "1-2")

    def test_missing_file(self):
        with self.assertRaises(ValueError):
            render_template("file:nope.j2", {})

    def test_syntax_error(self):
        with self.assertRaises(ValueError):
            render_template("{% if %}", {})

    def test_unsupported_spec(self):
        with self.assertRaises(ValueError):
            render_template(42, {})

    def test_bare_file_name_resolves_packaged_template(self):
        context = {"subject": "S", "cta": {"label": "Go", "url": "u"}, "project": {}}
        out = render_template("digest_text", context)
        self.assertTrue(out.startswith("S"))


class DigestTemplatingServiceTests(SimpleTestCase):
    def setUp(self):
        self.service = DigestTemplatingService()

    def test_text_body(self):
        rendered = self.service.render(make_digest(), PROJECT)

        self.assertEqual(rendered["subject"], "Acme: 3 new article ideas")
        text = rendered["text"]
        self.assertIn("New article ideas:\n- One\n- Two", text)
        self.assertIn("- 3 new article ideas\n  3 recommendations across all sections", text)
        self.assertIn("Review Recommendations: https://x/r", text)
        self.assertIn("for Acme.", text)
        self.assertNotIn("Needs attention", text)

    def test_html_body_is_escaped(self):
        digest = make_digest(
            preview=None,
            failures=[DigestLine(event_type="pr_analyzed", status="error", message="<b>boom</b>")],
        )

        html = self.service.render(digest, PROJECT)["html"]

        self.assertIn("Needs attention", html)
        self.assertIn("&lt;b&gt;boom&lt;/b&gt;", html)

    def test_custom_templates_from_config(self):
        config = {"text_template": "{{ subject }} / {{ preview_type }}", "html_template": ""}

        rendered = self.service.render(make_digest(preview=None), PROJECT, config)

        self.assertEqual(rendered["text"], "Acme: 3 new article ideas / none")
        self.assertIsNone(rendered["html"])

    def test_broken_html_template_is_optional(self):
        config = {"html_template": "{% for %}"}
        with self.assertLogs("apps.notify.templating", level="WARNING"):
            rendered = self.service.render(make_digest(), PROJECT, config)
        self.assertIsNone(rendered["html"])
        self.assertTrue(rendered["text"])
