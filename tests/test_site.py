from __future__ import annotations

import pathlib
import re
from typing import Dict

import pytest

from conftest import RepoBuilder
from rendergit_site import SiteConfig, generate
from rendergit_site.errors import RepositoryNotFound
from rendergit_site.highlight import BINARY_PLACEHOLDER
from rendergit_site.rendergit import main


def snapshot(root: pathlib.Path) -> Dict[str, bytes]:
    return {str(p.relative_to(root)): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}


def test_two_commit_history(tmp_path, two_commit_repo: RepoBuilder) -> None:
    out = tmp_path / "site"
    result = generate(two_commit_repo.root, out, SiteConfig(jobs=2))
    assert result.head == two_commit_repo.second
    assert result.commits == 2

    log = (out / "log.html").read_text()
    second_link = f'commit/{two_commit_repo.second}.html'
    first_link = f'commit/{two_commit_repo.first}.html'
    assert log.index(second_link) < log.index(first_link)

    second = (out / second_link).read_text()
    assert second.count('<section class="file-change"') == 1
    assert '<span class="status-modified">modified</span> a.txt' in second
    assert second.count("@@ -1 +1 @@") == 1
    assert f'<a href="{two_commit_repo.first}.html">' in second

    first = (out / first_link).read_text()
    assert first.count('<section class="file-change"') == 1
    assert '<span class="status-added">added</span> a.txt' in first


def test_subdirectory_links(tmp_path, nested_repo: RepoBuilder) -> None:
    out = tmp_path / "site"
    generate(nested_repo.root, out)
    root_listing = (out / "tree" / "index.html").read_text()
    assert 'href="src/index.html"' in root_listing
    src_listing = (out / "tree" / "src" / "index.html").read_text()
    assert 'href="main.txt.html"' in src_listing
    assert (out / "tree" / "src" / "main.txt.html").exists()
    assert (out / "style.css").exists()
    assert (out / "index.html").exists()


def test_output_is_idempotent(tmp_path, nested_repo: RepoBuilder) -> None:
    nested_repo.commit_files({"README.md": "# Demo v2\n", "src": {"main.txt": "main\nmore\n"},
                              "tool.py": "print('hi')\n"}, "second")
    out = tmp_path / "site"
    generate(nested_repo.root, out, SiteConfig(jobs=4))
    first = snapshot(out)
    generate(nested_repo.root, out, SiteConfig(jobs=1))
    assert snapshot(out) == first


def test_binary_blob_page(tmp_path, repo_builder: RepoBuilder) -> None:
    repo_builder.commit_files({"data.bin": b"\x00\x01\x02binary"})
    out = tmp_path / "site"
    generate(repo_builder.root, out)
    page = (out / "tree" / "data.bin.html").read_text()
    assert BINARY_PLACEHOLDER in page
    assert 'class="highlight"' not in page
    assert (out / "raw" / "data.bin").read_bytes() == b"\x00\x01\x02binary"


def test_commit_page_shows_metadata(tmp_path, two_commit_repo: RepoBuilder) -> None:
    two_commit_repo.write_control("description", "Greeting tools")
    out = tmp_path / "site"
    generate(two_commit_repo.root, out)
    page = (out / "commit" / f"{two_commit_repo.second}.html").read_text()
    assert "greet the world" in page
    assert 'mailto:ada@example.com' in page
    assert "<p>Greeting tools</p>" in page
    assert re.search(r"1 file changed", page)


def test_missing_repository(tmp_path) -> None:
    with pytest.raises(RepositoryNotFound):
        generate(tmp_path / "missing", tmp_path / "site")


def test_cli_success(tmp_path, two_commit_repo: RepoBuilder, capsys) -> None:
    out = tmp_path / "site"
    assert main([str(two_commit_repo.root), str(out), "--jobs", "1", "--context", "1"]) == 0
    assert (out / "log.html").exists()
    assert "Rendered 2 commits" in capsys.readouterr().err


def test_cli_failure_exit_code(tmp_path) -> None:
    assert main([str(tmp_path / "missing"), str(tmp_path / "site")]) == 1


def test_non_utf8_file_name(tmp_path, repo_builder: RepoBuilder) -> None:
    name = b"caf\xe9.txt".decode("utf-8", "surrogateescape")
    repo_builder.commit_files({name: "latin-1 name\n"})
    out = tmp_path / "site"
    generate(repo_builder.root, out)
    listing = (out / "tree" / "index.html").read_bytes()
    assert b'href="caf%E9.txt.html"' in listing
    assert (out / "tree" / f"{name}.html").exists()


def test_page_names_never_collide(tmp_path, repo_builder: RepoBuilder) -> None:
    repo_builder.commit_files({
        "index": "first\n",
        "index~": "second\n",
        "notes": "plain file\n",
        "notes.html": {"inner.txt": "nested\n"},
    })
    out = tmp_path / "site"
    result = generate(repo_builder.root, out)
    assert len(set(result.files)) == len(result.files)
    tree = out / "tree"
    assert "first" in (tree / "index~.html").read_text()
    assert "second" in (tree / "index~~.html").read_text()
    assert "plain file" in (tree / "notes.html").read_text()
    assert "nested" in (tree / "notes.html~" / "inner.txt.html").read_text()
    listing = (tree / "index.html").read_text()
    for link in ("index~.html", "index~~.html", "notes.html", "notes.html~/index.html"):
        assert f'href="{link}"' in listing


def test_cli_rejects_negative_context(tmp_path, two_commit_repo: RepoBuilder, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main([str(two_commit_repo.root), str(tmp_path / "site"), "--context", "-1"])
    assert excinfo.value.code == 2
    assert "must be 0 or more" in capsys.readouterr().err


def test_log_rows_carry_diff_stats(tmp_path, two_commit_repo: RepoBuilder) -> None:
    out = tmp_path / "site"
    generate(two_commit_repo.root, out, SiteConfig(jobs=3))
    log = (out / "log.html").read_text()
    row = next(r for r in log.splitlines() if two_commit_repo.second in r)
    assert '<td class="numeric">1</td><td class="numeric">+1</td><td class="numeric">-1</td>' in row
