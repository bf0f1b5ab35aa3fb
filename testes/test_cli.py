import json
import os
import sys

# Ensure project root is on sys.path for imports when running tests directly
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from blog_migrator import cli
from test_wordpress_extractor import item, write_wxr


def test_parse_args_overrides():
    args = cli.parse_args(["--page-size", "5", "--max-concurrency", "2", "--start-page", "3", "--dry-run"])
    assert (args.page_size, args.max_concurrency, args.start_page, args.dry_run) == (5, 2, 3, True)
    assert args.config == cli.CONFIG_FILE


def test_preview_prints_posts(tmp_path, capsys):
    path = write_wxr(tmp_path, item("first-post"), item("second-post"))
    code = cli.main(["--config", str(tmp_path / "none.json"), "--xml", path, "--preview"])
    assert code == 0
    rows = json.loads(capsys.readouterr().out)
    assert [r["slug"] for r in rows] == ["first-post", "second-post"]
    assert rows[0]["author"] == "Jane Doe"


def test_dry_run_from_wxr(tmp_path, capsys):
    path = write_wxr(tmp_path, item("first-post"))
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "wordpress": {"media_host": "blog.example.com"},
                "storage": {"public_url": "https://media.example.com"},
                "migration": {"report_dir": str(tmp_path / "reports")},
            }
        ),
        encoding="utf-8",
    )
    code = cli.main(["--config", str(config_path), "--xml", path, "--dry-run"])
    out = capsys.readouterr().out
    assert code == 0
    summary = json.loads(out[out.index("{\n"):out.rindex("}") + 1])
    assert summary["succeeded"] == 1
    assert summary["failed"] == 0
    assert os.path.exists(tmp_path / "reports" / "migration.log")


def test_root_entry_point_delegates_to_package_cli():
    import main as entry

    assert entry.main is cli.main
