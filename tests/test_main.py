"""
Unit tests for the command line entry point.
"""

import json
from unittest.mock import patch

from kollektiv.__main__ import build_parser, main


class TestMain:
    def test_parser_defaults(self):
        args = build_parser().parse_args([])

        assert args.config is None
        assert args.port is None

    def test_unreadable_config_exits_with_error(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{oops")

        with patch("kollektiv.__main__.web.run_app") as run_app:
            assert main(["--config", str(path)]) == 1

        run_app.assert_not_called()

    def test_overrides_are_applied(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"port": 9000}))

        with patch("kollektiv.__main__.web.run_app") as run_app, \
                patch("kollektiv.__main__.configure_logging") as configure_logging:
            result = main([
                "--config", str(path),
                "--root", str(tmp_path / "data"),
                "--host", "0.0.0.0",
                "--log-level", "debug",
            ])

        assert result == 0
        configure_logging.assert_called_once_with("DEBUG")
        _, kwargs = run_app.call_args
        assert kwargs == {"host": "0.0.0.0", "port": 9000}
