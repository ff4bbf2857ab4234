import os
import sys
import json
import unittest

sys.path.append(os.path.dirname(os.path.dirname(__file__)))
from cli import backup_db, demo_data, export_sessions, main, restore_db
from rest_api import VaultAPI


class CLIToolsTest(unittest.TestCase):
    def setUp(self) -> None:
        self.db_path = "test_cli.db"
        self.yaml_path = "test_cli.yaml"
        self.paths = [self.db_path, self.yaml_path, "backup_cli.db", "sessions_cli.json"]
        for path in self.paths:
            if os.path.exists(path):
                os.remove(path)

    def tearDown(self) -> None:
        for path in self.paths:
            if os.path.exists(path):
                os.remove(path)

    def test_demo_data(self) -> None:
        vault_id = demo_data(self.db_path, self.yaml_path)
        api = VaultAPI(db_path=self.db_path, yaml_path=self.yaml_path)
        self.assertEqual(api.vaults.fetch_detail(vault_id)["name"], "Demo")
        names = [t["name"] for t in api.template_service.list_templates(vault_id)]
        self.assertEqual(names, ["Push Day"])
        session = api.session_service.current_session(vault_id)
        detail = api.session_service.session_detail(vault_id, session["id"])
        self.assertEqual(len(detail["entries"]), 2)
        self.assertEqual(detail["entries"][0]["sets"][0]["reps"], 8)
        self.assertEqual(detail["progress_pct"], 20)

    def test_export_backup_restore(self) -> None:
        vault_id = demo_data(self.db_path, self.yaml_path)
        count = export_sessions(self.db_path, self.yaml_path, vault_id, "sessions_cli.json")
        self.assertEqual(count, 1)
        with open("sessions_cli.json", encoding="utf-8") as f:
            data = json.load(f)
        self.assertEqual(data[0]["template_name"], "Push Day")

        backup_db(self.db_path, "backup_cli.db")
        self.assertTrue(os.path.exists("backup_cli.db"))
        os.remove(self.db_path)
        restore_db("backup_cli.db", self.db_path)
        api = VaultAPI(db_path=self.db_path, yaml_path=self.yaml_path)
        self.assertEqual(len(api.sessions.fetch_all_sessions(vault_id)), 1)

    def test_main_commands(self) -> None:
        main(["demo", "--db", self.db_path, "--yaml", self.yaml_path])
        main(["backup", "--db", self.db_path, "--out", "backup_cli.db"])
        self.assertTrue(os.path.exists("backup_cli.db"))
        main(["vacuum", "--db", self.db_path])
        main(["streak", "--db", self.db_path, "--yaml", self.yaml_path, "--vault", "1"])
        main(
            [
                "analytics",
                "--db",
                self.db_path,
                "--yaml",
                self.yaml_path,
                "--vault",
                "1",
                "--kind",
                "tendons",
            ]
        )
        main(
            [
                "export",
                "--db",
                self.db_path,
                "--yaml",
                self.yaml_path,
                "--vault",
                "1",
                "--out",
                "sessions_cli.json",
            ]
        )
        self.assertTrue(os.path.exists("sessions_cli.json"))

    def test_unknown_vault_fails(self) -> None:
        with self.assertRaises(ValueError):
            main(["streak", "--db", self.db_path, "--yaml", self.yaml_path, "--vault", "42"])


if __name__ == "__main__":
    unittest.main()
