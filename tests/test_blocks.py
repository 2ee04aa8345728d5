import unittest

from flask_deploy.blocks import (
    begin_marker,
    find_block,
    inject_location_block,
    parse_server_blocks,
    upsert_block,
)
from tests.fakes import DEFAULT_SITE

BODY = "location /blog/ {\n    proxy_pass http://unix:/tmp/blog.sock;\n}"


class TestParseServerBlocks(unittest.TestCase):
    def test_default_site(self):
        servers = parse_server_blocks(DEFAULT_SITE)
        self.assertEqual(len(servers), 1)
        lines = DEFAULT_SITE.splitlines()
        self.assertEqual(lines[servers[0].catch_all].strip(), "location / {")
        self.assertEqual(lines[servers[0].end], "}")

    def test_comments_are_ignored(self):
        text = "# server {\n#     location / {\nserver {\n    listen 80; # { not a brace\n}\n"
        servers = parse_server_blocks(text)
        self.assertEqual(len(servers), 1)
        self.assertEqual(servers[0].start, 2)
        self.assertIsNone(servers[0].catch_all)

    def test_nested_locations_are_not_catch_all(self):
        text = "server {\n    location /api {\n        location / {\n        }\n    }\n}\n"
        self.assertIsNone(parse_server_blocks(text)[0].catch_all)


class TestInjectLocationBlock(unittest.TestCase):
    def test_inserted_before_catch_all(self):
        text, changed = inject_location_block(DEFAULT_SITE, "blog", BODY)
        self.assertTrue(changed)
        self.assertLess(text.index(begin_marker("blog")), text.index("\tlocation / {"))
        self.assertIn("\tlocation /blog/ {\n\t    proxy_pass", text)
        self.assertTrue(text.endswith("\t}\n}\n"))

    def test_second_injection_is_noop(self):
        once, _ = inject_location_block(DEFAULT_SITE, "blog", BODY)
        twice, changed = inject_location_block(once, "blog", BODY)
        self.assertFalse(changed)
        self.assertEqual(twice, once)
        self.assertEqual(twice.count(begin_marker("blog")), 1)

    def test_changed_body_replaces_block(self):
        once, _ = inject_location_block(DEFAULT_SITE, "blog", BODY)
        body = BODY.replace("/tmp/blog.sock", "/run/blog.sock")
        twice, changed = inject_location_block(once, "blog", body)
        self.assertTrue(changed)
        self.assertEqual(twice.count(begin_marker("blog")), 1)
        self.assertIn("/run/blog.sock", twice)
        self.assertNotIn("/tmp/blog.sock", twice)

    def test_two_projects(self):
        text, _ = inject_location_block(DEFAULT_SITE, "blog", BODY)
        text, _ = inject_location_block(text, "wiki", BODY.replace("blog", "wiki"))
        self.assertEqual(text.count(begin_marker("blog")), 1)
        self.assertEqual(text.count(begin_marker("wiki")), 1)

    def test_without_catch_all_goes_before_closing_brace(self):
        text, changed = inject_location_block("server {\n    listen 80;\n}\n", "blog", BODY)
        self.assertTrue(changed)
        self.assertLess(text.index(begin_marker("blog")), text.rindex("}\n"))
        self.assertTrue(text.endswith("# END flask-deploy: blog\n}\n"))

    def test_without_server_block(self):
        with self.assertRaises(ValueError):
            inject_location_block("# nothing here\n", "blog", BODY)


class TestUpsertBlock(unittest.TestCase):
    def test_append_then_noop(self):
        text, changed = upsert_block("[DEFAULT]\nbantime = 600\n", "nginx-blog", "[nginx-blog]\nenabled = true")
        self.assertTrue(changed)
        self.assertTrue(text.startswith("[DEFAULT]\nbantime = 600\n\n# BEGIN"))

        again, changed = upsert_block(text, "nginx-blog", "[nginx-blog]\nenabled = true")
        self.assertFalse(changed)
        self.assertEqual(again, text)

    def test_replace(self):
        text, _ = upsert_block("", "nginx-blog", "[nginx-blog]\nenabled = true")
        text, changed = upsert_block(text, "nginx-blog", "[nginx-blog]\nenabled = false")
        self.assertTrue(changed)
        self.assertIsNotNone(find_block(text, "nginx-blog"))
        self.assertIn("enabled = false", text)
        self.assertNotIn("enabled = true", text)


if __name__ == "__main__":
    unittest.main()
