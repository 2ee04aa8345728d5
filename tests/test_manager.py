import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from flask_deploy.manager import Manager, main
from flask_deploy.system import CommandResult
from tests.fakes import FakeSystem, make_record


def enddate(days: int) -> str:
    expiry = datetime.now(timezone.utc) + timedelta(days=days, hours=1)
    return expiry.strftime("notAfter=%b %d %H:%M:%S %Y GMT\n")


class TestDispatch(unittest.TestCase):
    def setUp(self):
        self.system = FakeSystem()
        self.manager = Manager(make_record(), self.system)

    def test_exit(self):
        self.assertFalse(self.manager.dispatch("0"))

    def test_invalid_choice_keeps_loop(self):
        self.assertTrue(self.manager.dispatch("99"))
        self.assertTrue(self.manager.dispatch("status"))
        self.assertEqual(self.system.commands, [])

    def test_closed_command_table(self):
        self.assertEqual(list(self.manager.commands), [str(i) for i in range(1, 12)])

    def test_run_until_exit(self):
        with patch("builtins.input", side_effect=["10", "", "42", "", "0"]):
            self.manager.run()
        self.assertEqual(len(self.system.ran("git -C")), 2)

    def test_failing_command_returns_to_menu(self):
        with patch.object(self.system, "supervisor_control", side_effect=EOFError("connection closed")):
            self.assertTrue(self.manager.dispatch("2"))
        self.assertTrue(self.manager.dispatch("10"))

    def test_restart_dispatch(self):
        self.manager.dispatch("2")
        self.assertIn("supervisorctl restart blog", self.system.commands)


class TestHealthCheck(unittest.TestCase):
    def test_only_success_and_redirects_pass(self):
        system = FakeSystem()
        system.supervisor_states["blog"] = "RUNNING"
        manager = Manager(make_record(), system)
        for code, expected in [(200, True), (301, True), (302, True), (404, False), (500, False), (None, False)]:
            with patch("flask_deploy.manager.check_http_status", return_value=(code, "")) as mock_http:
                self.assertEqual(manager.health_check(), (True, expected), code)
            mock_http.assert_called_once_with("http://example.com/")

    def test_stopped_service(self):
        manager = Manager(make_record(), FakeSystem())
        with patch("flask_deploy.manager.check_http_status", return_value=(200, "HTTP 200 OK")):
            self.assertEqual(manager.health_check(), (False, True))

    @patch("flask_deploy.manager.timed_http_status")
    def test_url_test(self, mock_http):
        mock_http.side_effect = [(301, "HTTP 301 Moved Permanently", 0.01), (None, "timed out", 10.0)]
        manager = Manager(make_record(), FakeSystem())
        self.assertEqual(
            manager.url_test(),
            [
                ("http://example.com/", 301, "redirect"),
                ("https://example.com/", None, "connection failed"),
            ],
        )


class TestCertificate(unittest.TestCase):
    def test_expiry_bands(self):
        for days, band in [(45, "normal"), (20, "warning"), (3, "critical")]:
            system = FakeSystem()
            system.responses["openssl x509"] = CommandResult(0, enddate(days))
            manager = Manager(make_record(), system)
            self.assertEqual(manager.certificate_days(), days)
            self.assertEqual(manager.show_certificate(), band)

    def test_missing_certificate(self):
        system = FakeSystem()
        system.responses["openssl x509"] = CommandResult(1, stderr="No such file")
        manager = Manager(make_record(), system)
        self.assertIsNone(manager.show_certificate())

    def test_ssl_submenu_installs(self):
        system = FakeSystem()
        manager = Manager(make_record(), system)
        with patch("builtins.input", side_effect=["1"]):
            manager.manage_ssl()
        self.assertEqual(system.interactive, ["certbot --nginx -d example.com"])

    def test_submenu_back(self):
        system = FakeSystem()
        manager = Manager(make_record(), system)
        with patch("builtins.input", side_effect=["4"]):
            manager.manage_ssl()
        self.assertEqual(system.commands, [])


class TestActions(unittest.TestCase):
    def setUp(self):
        self.system = FakeSystem()
        self.manager = Manager(make_record(), self.system)

    def test_update_then_restart(self):
        with patch("builtins.input", side_effect=[""]):
            self.assertTrue(self.manager.update_project())
        self.assertEqual(self.system.interactive, ["/home/bloguser/blog/update.sh"])
        self.assertIn("supervisorctl restart blog", self.system.commands)

    def test_failed_update(self):
        self.system.responses["/home/bloguser/blog/update.sh"] = CommandResult(1)
        self.assertFalse(self.manager.update_project())
        self.assertNotIn("supervisorctl restart blog", self.system.commands)

    def test_backup(self):
        path = self.manager.backup_project()
        self.assertRegex(path, r"^/tmp/blog_backup_\d{8}_\d{6}\.tar\.gz$")
        self.assertIn(f"tar -czf {path} -C /home/bloguser blog", self.system.commands)

    def test_failed_backup(self):
        self.system.responses["tar"] = CommandResult(2, stderr="No such file or directory")
        self.assertIsNone(self.manager.backup_project())

    def test_unban_validates_ip(self):
        with patch("builtins.input", side_effect=["not-an-ip"]):
            self.manager.unban_ip()
        self.assertEqual(self.system.ran("fail2ban-client"), [])

        with patch("builtins.input", side_effect=["198.51.100.4"]):
            self.manager.unban_ip()
        self.assertEqual(
            self.system.ran("fail2ban-client"),
            ["fail2ban-client set nginx-blog unbanip 198.51.100.4"],
        )

    def test_socket_check(self):
        self.assertFalse(self.manager.check_socket())
        self.system.files[self.manager.record.socket_path] = ""
        self.assertTrue(self.manager.check_socket())

    def test_status_shows_resources(self):
        self.system.responses["free -m"] = CommandResult(0, "Mem: 1000 500 500\n")
        self.system.responses["openssl x509"] = CommandResult(0, enddate(60))
        self.manager.show_status()
        self.assertIn("tail -n 5 /var/log/blog.log", self.system.commands)

    def test_restart_everything(self):
        self.manager.restart_everything()
        self.assertIn("supervisorctl restart blog", self.system.commands)
        self.assertIn("systemctl restart nginx", self.system.commands)
        self.assertIn("systemctl restart fail2ban", self.system.commands)


class TestMain(unittest.TestCase):
    def test_refuses_superuser(self):
        with patch("flask_deploy.manager.open_system", return_value=FakeSystem(superuser=True)):
            with self.assertRaises(SystemExit):
                main(make_record())

    def test_interrupt_exits_cleanly(self):
        system = FakeSystem()
        with patch("flask_deploy.manager.open_system", return_value=system) as mock_open:
            with patch("builtins.input", side_effect=KeyboardInterrupt):
                main(make_record(), host="deploy@203.0.113.7")
        mock_open.assert_called_once_with("deploy@203.0.113.7")


if __name__ == "__main__":
    unittest.main()
