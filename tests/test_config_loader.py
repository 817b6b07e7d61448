from __future__ import annotations

import tempfile
import unittest
from pathlib import Path

import yaml

from config.defaults import DEFAULT_MODEL
from config.defaults import DEFAULT_POLL_INTERVAL_SEC
from config.loader import load_config
from config.loader import parse_config
from misc.errors import ConfigError


class ParseConfigTests(unittest.TestCase):
    def test_empty_document_gets_defaults(self):
        config = parse_config({})
        self.assertEqual(config.global_.max_sleep_sec, 8)
        self.assertEqual(config.database.log_table_name, "bot_log")
        self.assertIsNone(config.object_storage)
        self.assertEqual(config.groups, [])

    def test_group_with_every_section(self):
        config = parse_config(
            {
                "object_storage": {"script_path": "./scripts/upload_s3.sh"},
                "groups": [
                    {
                        "id": "123",
                        "channel_id": 456,
                        "live": {"room_id": 42},
                        "agent": {
                            "known_members": {
                                7: "主人",
                                8: ["张三", "你的敌人"],
                                9: {"name": "李四", "aliases": ["小李", ""]},
                            }
                        },
                        "command": {"admin_ids": ["7", 8]},
                    }
                ],
            }
        )
        group = config.groups[0]
        self.assertEqual((group.id, group.channel_id), (123, 456))
        self.assertEqual(group.live.room_id, "42")
        self.assertEqual(group.live.poll_interval_sec, DEFAULT_POLL_INTERVAL_SEC)
        self.assertEqual(group.agent.model, DEFAULT_MODEL)
        members = group.agent.known_members
        self.assertEqual(members["7"].name, "主人")
        self.assertEqual((members["8"].name, members["8"].description), ("张三", "你的敌人"))
        self.assertEqual(members["9"].aliases, ("小李",))
        self.assertEqual(group.command.admin_ids, frozenset({7, 8}))
        self.assertEqual(group.command.max_dump_count, 10000)
        self.assertEqual(config.object_storage.script_path, "./scripts/upload_s3.sh")

    def test_sections_are_optional(self):
        group = parse_config({"groups": [{"id": 1}]}).groups[0]
        self.assertIsNone(group.live)
        self.assertIsNone(group.agent)
        self.assertIsNone(group.command)

    def test_rejects_bad_values(self):
        bad = [
            {"groups": [{"id": 1}, {"id": 1}]},
            {"groups": [{"id": 1, "agent": {"model": "gpt-2"}}]},
            {"groups": [{"id": 1, "live": {}}]},
            {"groups": [{"id": 1, "live": {"room_id": 1, "poll_interval_sec": 0}}]},
            {"groups": [{"id": "abc"}]},
            {"groups": [{"id": 1, "command": {"max_dump_count": 0}}]},
            {"database": {"group_table_prefix": "msg; DROP TABLE x"}},
            {"groups": "not a list"},
            ["not", "a", "mapping"],
        ]
        for payload in bad:
            with self.subTest(payload=payload):
                with self.assertRaises(ConfigError):
                    parse_config(payload)


class LoadConfigTests(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.dir = Path(self.tmp.name)

    def tearDown(self):
        self.tmp.cleanup()

    def test_missing_file_writes_template(self):
        path = self.dir / "conf" / "config.yml"
        config, existed = load_config(path)
        self.assertFalse(existed)
        self.assertTrue(path.exists())
        self.assertEqual(len(config.groups), 1)
        reparsed, existed = load_config(path)
        self.assertTrue(existed)
        self.assertEqual(reparsed.groups[0].id, config.groups[0].id)

    def test_reads_yaml(self):
        path = self.dir / "config.yml"
        path.write_text(
            yaml.safe_dump({"global": {"max_sleep_sec": 0, "timezone": "UTC"}, "groups": [{"id": 5}]}),
            encoding="utf-8",
        )
        config, existed = load_config(path)
        self.assertTrue(existed)
        self.assertEqual(config.global_.max_sleep_sec, 0)
        self.assertEqual(config.global_.timezone, "UTC")

    def test_unparseable_yaml_is_a_config_error(self):
        path = self.dir / "config.yml"
        path.write_text("groups: [unclosed", encoding="utf-8")
        with self.assertRaises(ConfigError):
            load_config(path)


if __name__ == "__main__":
    unittest.main()
